"""Classes describing a UPnP service: its actions and state variables.

A `ServiceDescription` is the parsed form of a Service Control Protocol
Description (SCPD) document. Fetching the document is left to the caller::

    >>> description = ServiceDescription.from_xml(
    ...     scpd_text, "urn:schemas-upnp-org:service:RenderingControl:1")
    >>> print(description.actions["SetVolume"])
    SetVolume(InstanceID, Channel, DesiredVolume) -> {}
    >>> print(description.state_variables["Volume"])
    ui2 [0..100]
"""

from collections import OrderedDict, namedtuple
from types import MappingProxyType

from .exceptions import UPnPException
from .xml import XML, local_name

# UPnP Spec at http://upnp.org/specs/arch/UPnP-arch-DeviceArchitecture-v1.1.pdf

REAL_TYPES = frozenset(("r4", "r8", "number", "fixed.14.4", "float"))


class AllowedRange(namedtuple("AllowedRangeBase", "minimum, maximum, step")):
    """The ``allowedValueRange`` of a state variable."""

    def __str__(self):
        return "[{}..{}]".format(self.minimum, self.maximum)


class StateVariableDescriptor(
    namedtuple(
        "StateVariableDescriptorBase",
        "name, datatype, allowed_range, allowed_values, default, send_events",
    )
):
    """A UPnP state variable with its type, default value and constraints.

    At most one of ``allowed_range`` and ``allowed_values`` is normally set.
    When both are `None` any value of ``datatype`` is accepted.
    """

    # pylint: disable=too-many-arguments
    def __new__(
        cls,
        name,
        datatype,
        allowed_range=None,
        allowed_values=None,
        default=None,
        send_events=True,
    ):
        if allowed_values is not None:
            allowed_values = tuple(allowed_values)
        return super().__new__(
            cls, name, datatype, allowed_range, allowed_values, default, send_events
        )

    def __str__(self):
        if self.allowed_values:
            return "[{}]".format(", ".join(self.allowed_values))
        if self.allowed_range:
            return "{} {}".format(self.datatype, self.allowed_range)
        return self.datatype


class Argument(namedtuple("ArgumentBase", "name, related_state_variable")):
    """An action argument and the name of the state variable it refers to."""


class ActionDescriptor(namedtuple("ActionDescriptorBase", "name, in_args, out_args")):
    """A UPnP action and its ordered input and output arguments."""

    def __str__(self):
        return "{0}({1}) -> {{{2}}}".format(
            self.name, ", ".join(self.in_arg_names), ", ".join(self.out_arg_names)
        )

    def __new__(cls, name, in_args=(), out_args=()):
        return super().__new__(
            cls,
            name,
            tuple(Argument(*arg) for arg in in_args),
            tuple(Argument(*arg) for arg in out_args),
        )

    @property
    def in_arg_names(self):
        """list(str): The names of the input arguments, in declared order."""
        return [arg.name for arg in self.in_args]

    @property
    def out_arg_names(self):
        """list(str): The names of the output arguments, in declared order."""
        return [arg.name for arg in self.out_args]

    def arg_reference(self, arg_name):
        """Return the related state variable name of an argument.

        Args:
            arg_name (str): An input or output argument name.

        Returns:
            str: The state variable name, or `None` if the action has no
            such argument.
        """
        for arg in self.in_args + self.out_args:
            if arg.name == arg_name:
                return arg.related_state_variable
        return None


class ServiceDescription:
    """The actions and state variables of one UPnP service.

    Built once and never mutated. The ``actions`` and ``state_variables``
    attributes are read-only mappings, keyed by name, in document order.
    """

    def __init__(self, service_type, actions=(), state_variables=()):
        """
        Args:
            service_type (str): The service type URN, eg
                ``urn:schemas-upnp-org:service:RenderingControl:1``.
            actions (iterable): `ActionDescriptor` instances.
            state_variables (iterable): `StateVariableDescriptor` instances.
        """
        self.service_type = service_type
        self.actions = MappingProxyType(
            OrderedDict((action.name, action) for action in actions)
        )
        self.state_variables = MappingProxyType(
            OrderedDict((var.name, var) for var in state_variables)
        )

    def __repr__(self):
        return "<{} '{}' at {}>".format(
            self.__class__.__name__, self.service_type, hex(id(self))
        )

    @property
    def event_vars(self):
        """list(str): Names of the state variables which send events."""
        return [var.name for var in self.state_variables.values() if var.send_events]

    @classmethod
    def from_xml(cls, scpd, service_type):
        """Build a description from an SCPD document.

        Namespaces are ignored, since devices are not consistent about
        declaring them.

        Args:
            scpd (str, bytes or :class:`~xml.etree.ElementTree.Element`):
                The SCPD document, or its already-parsed root element.
            service_type (str): The service type URN.

        Returns:
            ServiceDescription: the description.
        """
        if isinstance(scpd, str):
            scpd = scpd.encode("utf-8")
        tree = XML.fromstring(scpd) if isinstance(scpd, bytes) else scpd

        state_variables = [
            _parse_state_variable(node)
            for table in _children(tree, "serviceStateTable")
            for node in _children(table, "stateVariable")
        ]
        actions = [
            _parse_action(node)
            for action_list in _children(tree, "actionList")
            for node in _children(action_list, "action")
        ]
        return cls(service_type, actions, state_variables)


def _children(element, name):
    """Child elements with the local name ``name``."""
    return [child for child in element if local_name(child.tag) == name]


def _child_text(element, name, default=None):
    for child in _children(element, name):
        return (child.text or "").strip()
    return default


def _number(text, datatype):
    if text is None:
        return None
    try:
        if datatype in REAL_TYPES:
            return float(text)
        return int(text)
    except ValueError as error:
        raise UPnPException(
            "Invalid allowedValueRange bound {!r} for type {}".format(text, datatype)
        ) from error


def _parse_state_variable(node):
    datatype = _child_text(node, "dataType", "")
    allowed_range = None
    for range_node in _children(node, "allowedValueRange"):
        step = _child_text(range_node, "step")
        allowed_range = AllowedRange(
            _number(_child_text(range_node, "minimum"), datatype),
            _number(_child_text(range_node, "maximum"), datatype),
            _number(step, datatype) if step else 1,
        )
    allowed_values = None
    for list_node in _children(node, "allowedValueList"):
        allowed_values = [
            value.text or "" for value in _children(list_node, "allowedValue")
        ]
    return StateVariableDescriptor(
        name=_child_text(node, "name", ""),
        datatype=datatype,
        allowed_range=allowed_range,
        allowed_values=allowed_values,
        default=_child_text(node, "defaultValue"),
        send_events=node.attrib.get("sendEvents", "yes").lower() == "yes",
    )


def _parse_action(node):
    in_args = []
    out_args = []
    for arg_list in _children(node, "argumentList"):
        for arg in _children(arg_list, "argument"):
            argument = Argument(
                _child_text(arg, "name", ""),
                _child_text(arg, "relatedStateVariable", ""),
            )
            if _child_text(arg, "direction", "").lower() == "in":
                in_args.append(argument)
            else:
                out_args.append(argument)
    return ActionDescriptor(_child_text(node, "name", ""), in_args, out_args)
