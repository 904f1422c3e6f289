"""Validation of action argument values against state variable definitions.

An `ArgumentValidator` is a set of independent checks, at most one of each
kind::

    >>> validator = ArgumentValidator.build(
    ...     lambda b: b.type("ui2").in_range(0, 100))
    >>> validator.validate(50)
    True
    >>> validator.validate(150)
    Traceback (most recent call last):
    ...
    upnpcp.exceptions.InvalidArgument: 150 is not in allowed range of values: [0..100]
"""

import datetime
from decimal import Decimal

from .description import AllowedRange
from .exceptions import InvalidArgument, UnknownArgument, UnrecognizedType

# Valid UPnP types for each Python type
PYTHON_TYPE_TO_UPNP_TYPE = {
    float: ("r4", "r8", "number", "fixed.14.4", "float"),
    Decimal: ("r4", "r8", "number", "fixed.14.4", "float"),
    int: ("ui1", "ui2", "ui4", "i1", "i2", "i4", "int"),
    str: ("char", "string", "bin.base64", "bin.hex", "uri", "uuid"),
    bool: ("bool", "boolean"),
    datetime.datetime: ("date", "dateTime", "dateTime.tz", "time", "time.tz"),
    datetime.date: ("date", "dateTime"),
    datetime.time: ("time", "time.tz"),
}

# Inversion of PYTHON_TYPE_TO_UPNP_TYPE
UPNP_TYPE_VALID_TYPES = {}
for _python_type, _upnp_types in PYTHON_TYPE_TO_UPNP_TYPE.items():
    for _upnp_type in _upnp_types:
        UPNP_TYPE_VALID_TYPES.setdefault(_upnp_type, []).append(_python_type)


def _is_instance(value, python_type):
    # bool is a subclass of int, and datetime of date, but neither should
    # pass for the other
    if isinstance(value, bool) and python_type is not bool:
        return False
    if isinstance(value, datetime.datetime) and python_type is datetime.date:
        return False
    return isinstance(value, python_type)


class TypeCheck:
    """Checks that a value has a Python type matching a UPnP data type."""

    def __init__(self, datatype):
        """
        Args:
            datatype (str): The UPnP data type, eg ``"ui4"``.

        Raises:
            UnrecognizedType: if ``datatype`` is not a known UPnP type.
        """
        self.datatype = datatype
        try:
            self.valid_types = tuple(UPNP_TYPE_VALID_TYPES[datatype])
        except KeyError:
            raise UnrecognizedType(datatype) from None

    def validate(self, value):
        if not any(_is_instance(value, t) for t in self.valid_types):
            raise InvalidArgument(
                "{!r} is the wrong type. Should be one of: {}".format(
                    value, ", ".join(t.__name__ for t in self.valid_types)
                )
            )


class RangeCheck:
    """Checks that a value lies within ``[minimum, maximum]``.

    The step is kept for introspection only. Values which are not a whole
    number of steps from the minimum are still accepted.
    """

    def __init__(self, minimum, maximum, step=1):
        self.range = AllowedRange(minimum, maximum, step)

    def validate(self, value):
        minimum, maximum, _ = self.range
        try:
            in_range = (minimum is None or minimum <= value) and (
                maximum is None or value <= maximum
            )
        except TypeError:
            in_range = False
        if not in_range:
            raise InvalidArgument(
                "{!r} is not in allowed range of values: {}".format(value, self.range)
            )


class AllowedValueCheck:
    """Checks that a value is exactly one of an enumerated list of strings."""

    def __init__(self, *allowed_values):
        self.allowed_values = tuple(allowed_values)

    def validate(self, value):
        if not isinstance(value, str) or value not in self.allowed_values:
            raise InvalidArgument(
                "{!r} is not in list of allowed values: {}".format(
                    value, ", ".join(self.allowed_values)
                )
            )


class ArgumentValidator:
    """A composable validator for a single argument value.

    Passes a value only if every configured check passes. A validator with
    no checks accepts everything.
    """

    class Builder:
        """Collects checks for an `ArgumentValidator`.

        Adding a second check of the same kind replaces the first.
        """

        def __init__(self):
            self._checks = {}

        def type(self, datatype):
            return self.add_check(TypeCheck(datatype))

        def in_range(self, minimum, maximum, step=1):
            return self.add_check(RangeCheck(minimum, maximum, step))

        def allowed_values(self, *values):
            return self.add_check(AllowedValueCheck(*values))

        def add_check(self, check):
            self._checks[type(check)] = check
            return self

        def build(self):
            return ArgumentValidator(self._checks)

    def __init__(self, checks=None):
        self._checks = dict(checks or {})

    def __repr__(self):
        return "<{} checks={}>".format(
            self.__class__.__name__, sorted(c.__name__ for c in self._checks)
        )

    def validate(self, value):
        """Validate a value.

        Returns:
            bool: `True` if the value is valid.

        Raises:
            InvalidArgument: if any check rejects the value.
        """
        for check in self._checks.values():
            check.validate(value)
        return True

    @property
    def required_types(self):
        """tuple: The accepted Python types, or `None` if unchecked."""
        check = self._checks.get(TypeCheck)
        return check.valid_types if check else None

    @property
    def allowed_values(self):
        """tuple: The allowed values, or `None` if unchecked."""
        check = self._checks.get(AllowedValueCheck)
        return check.allowed_values if check else None

    @property
    def valid_range(self):
        """`AllowedRange`: The allowed range, or `None` if unchecked."""
        check = self._checks.get(RangeCheck)
        return check.range if check else None

    @classmethod
    def build(cls, configure=None):
        """Build a validator.

        Args:
            configure (callable, optional): Called with a `Builder` to add
                checks to it.
        """
        builder = cls.Builder()
        if configure is not None:
            configure(builder)
        return builder.build()

    @classmethod
    def no_op(cls):
        """A validator which accepts every value."""
        return cls.build()

    @classmethod
    def from_state_variable(cls, state_variable):
        """Build a validator from a `StateVariableDescriptor`.

        Raises:
            UnrecognizedType: if the state variable's data type is unknown.
        """
        builder = cls.Builder().type(state_variable.datatype)
        if state_variable.allowed_range is not None:
            builder.in_range(*state_variable.allowed_range)
        if state_variable.allowed_values is not None:
            builder.allowed_values(*state_variable.allowed_values)
        return builder.build()


class ValidatorProvider:
    """Maps state variable names to their `ArgumentValidator`."""

    def __init__(self, validators):
        self._validators = dict(validators)

    def validator(self, state_variable_name):
        """Return the validator for a state variable.

        Raises:
            UnknownArgument: if there is no such state variable.
        """
        try:
            return self._validators[state_variable_name]
        except KeyError:
            raise UnknownArgument(state_variable_name) from None

    @classmethod
    def from_description(cls, description):
        """Build validators for every state variable of a
        `ServiceDescription`. Unknown data types fail here."""
        return cls(
            (name, ArgumentValidator.from_state_variable(var))
            for name, var in description.state_variables.items()
        )


class NoOpValidatorProvider:
    """A provider whose validators accept everything."""

    # pylint: disable=no-self-use, unused-argument
    def validator(self, state_variable_name):
        return ArgumentValidator.no_op()
