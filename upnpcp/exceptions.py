"""Exceptions that are used by upnpcp."""


class UPnPException(Exception):

    """Base class for all upnpcp exceptions."""


class UnrecognizedType(UPnPException):

    """Raised when a service description uses an unknown UPnP data type.

    This happens while validators are built, never on first use.
    """

    def __init__(self, datatype):
        """
        Args:
            datatype (str): The unknown UPnP data type.
        """
        super().__init__(datatype)
        self.datatype = datatype

    def __str__(self):
        return "Unrecognized UPnP type: {}".format(self.datatype)


class InvalidArgument(UPnPException):

    """A value supplied for an action argument failed validation.

    Attributes:
        reason (str): Why the value was rejected.
        argument (str): The argument name, or `None` when raised by a
            validator which does not know which argument it is checking.
    """

    def __init__(self, reason, argument=None):
        super().__init__(reason, argument)
        self.reason = reason
        self.argument = argument

    def __str__(self):
        if self.argument is None:
            return self.reason
        return "Invalid value for argument {}: {}".format(self.argument, self.reason)


class UnsupportedArgument(UPnPException):

    """Raised when arguments which the action does not declare are supplied."""

    def __init__(self, unsupported, supported):
        """
        Args:
            unsupported (list): The offending argument names.
            supported (list): The input arguments the action declares.
        """
        super().__init__(unsupported, supported)
        self.unsupported = list(unsupported)
        self.supported = list(supported)

    def __str__(self):
        return "Unsupported arguments: {}. Supported args: {}".format(
            ", ".join(self.unsupported), ", ".join(self.supported)
        )


class UnknownMethod(UPnPException, AttributeError):

    """Raised when a method is not in a control point's catalog.

    It is also an `AttributeError`, so attribute dispatch on a
    `ControlPoint` behaves like a normal missing attribute.
    """

    def __init__(self, name):
        super().__init__("Unknown method: {}".format(name))
        self.name = name


class UnknownArgument(UPnPException):

    """Raised when an argument or state variable reference is unknown."""

    def __init__(self, name):
        super().__init__("Unknown argument: {}".format(name))
        self.name = name


class UnexpectedResponseShape(UPnPException):

    """Raised if a response body does not have exactly one top level
    element."""

    def __init__(self, keys):
        super().__init__(
            "Unexpected keys in response body: {}".format(", ".join(keys))
        )
        self.keys = list(keys)


class MissingSubscriptionId(UPnPException):

    """Raised if a subscription response carries no ``SID`` header."""


class MalformedResponse(UPnPException):

    """Raised if a response header cannot be parsed."""


class TransportFailure(UPnPException):

    """A non-2xx HTTP response to a SOAP or GENA request.

    Attributes:
        status_code (int): The HTTP status code.
        body (str): The response body, verbatim.
    """

    def __init__(self, status_code, body, message=None):
        super().__init__(status_code, body)
        self.status_code = status_code
        self.body = body
        self.message = message

    def __str__(self):
        if self.message:
            return self.message
        return "HTTP {} received: {}".format(self.status_code, self.body)


class SubscriptionLost(TransportFailure):

    """The device no longer knows the subscription (412 Precondition
    Failed, or 400 or 404 on renewal). A fresh subscription may be started
    instead."""


class SoapFault(TransportFailure):

    """A SOAP Fault, raised in response to an action sent over the network.

    Attributes:
        faultcode (str): The SOAP faultcode.
        faultstring (str): The SOAP faultstring.
        error_code (str): The UPnP error code, if there is one.
        error_description (str): A description of the UPnP error code.
    """

    # pylint: disable=too-many-arguments
    def __init__(
        self,
        status_code,
        body,
        faultcode=None,
        faultstring=None,
        error_code=None,
        error_description="",
    ):
        if error_code is not None:
            message = "UPnP Error {} received: {}".format(error_code, error_description)
        else:
            message = "{}: {}".format(faultcode, faultstring)
        super().__init__(status_code, body, message)
        self.faultcode = faultcode
        self.faultstring = faultstring
        self.error_code = error_code
        self.error_description = error_description


class IllegalState(UPnPException):

    """An operation was invoked in the wrong lifecycle state."""


class NotStarted(IllegalState):

    """A listener was asked for its URL before it started listening."""
