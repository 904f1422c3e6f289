# pylint: disable=invalid-name

"""Classes representing the actions of a UPnP service.

A `ControlPoint` is built from an already-fetched service description and
the service's control and event subscription URLs. Each action declared in
the description can then be called by name:

>>> cp = ControlPoint(
...     "urn:schemas-upnp-org:service:RenderingControl:1",
...     "http://192.168.1.102:1400/MediaRenderer/RenderingControl/Control",
...     "http://192.168.1.102:1400/MediaRenderer/RenderingControl/Event",
...     scpd_text,
...     validate_arguments=True,
... )
>>> cp.method_names()
['GetMute', 'SetMute', 'GetVolume', 'SetVolume', ...]
>>> cp.GetVolume(InstanceID=0, Channel="Master")
{'CurrentVolume': '12'}
>>> cp["SetVolume"]({"InstanceID": 0, "Channel": "Master", "DesiredVolume": 150})
Traceback (most recent call last):
...
upnpcp.exceptions.InvalidArgument: Invalid value for argument DesiredVolume: \
150 is not in allowed range of values: [0..100]

Events from the service can be received with `ControlPoint.on_event`, which
runs a notification listener and keeps the subscription alive until it is
cancelled:

>>> manager = cp.on_event(lambda event: print(event.variables))
>>> ...
>>> manager.unsubscribe()
"""

import logging
from urllib.parse import urlparse

from .description import ServiceDescription
from .events import EventClient, NotificationListener, SubscriptionManager
from .exceptions import (
    InvalidArgument,
    UnexpectedResponseShape,
    UnknownArgument,
    UnknownMethod,
    UnsupportedArgument,
)
from .soap import PROTECTED_OPTIONS, SoapTransport
from .utils import camel_to_underscore
from .validators import NoOpValidatorProvider, ValidatorProvider

log = logging.getLogger(__name__)  # pylint: disable=C0103


class ServiceMethod:
    """A callable UPnP action, bound to its `ActionDescriptor`.

    Holds no state between calls. The transport, validators and call
    options are supplied on each call.
    """

    def __init__(self, action, service_type):
        """
        Args:
            action (ActionDescriptor): The action.
            service_type (str): The service type URN, used in the
                SOAPACTION.
        """
        self.action = action
        self.service_type = service_type

    def __repr__(self):
        return "<{} {}>".format(self.__class__.__name__, self.action)

    @property
    def name(self):
        """str: The action name."""
        return self.action.name

    @property
    def in_args(self):
        """list(str): The declared input arguments, in order."""
        return self.action.in_arg_names

    @property
    def out_args(self):
        """list(str): The declared output arguments, in order."""
        return self.action.out_arg_names

    @property
    def soap_action(self):
        """str: The SOAPACTION for this action, ``{urn}#{name}``."""
        return "{}#{}".format(self.service_type, self.name)

    def arg_reference(self, arg_name):
        """str: The related state variable of an argument, or `None`."""
        return self.action.arg_reference(arg_name)

    def compose_args(self, in_argdict, validator_provider):
        """Check and order the arguments for a call.

        Args:
            in_argdict (dict): Arguments as a dict, e.g.
                ``{'InstanceID': 0, 'DesiredVolume': 50}``.
            validator_provider: Supplies a validator for each related state
                variable.

        Returns:
            list: ``(name, value)`` tuples, in declared order.

        Raises:
            UnsupportedArgument: If any argument is not a declared input.
            InvalidArgument: If any value fails validation.
        """
        declared = self.in_args
        unsupported = [name for name in in_argdict if name not in declared]
        if unsupported:
            raise UnsupportedArgument(unsupported, declared)

        for name, value in in_argdict.items():
            validator = validator_provider.validator(self.arg_reference(name))
            try:
                validator.validate(value)
            except InvalidArgument as error:
                raise InvalidArgument(error.reason, argument=name) from error

        return [(name, in_argdict[name]) for name in declared if name in in_argdict]

    def unwrap_arguments(self, response):
        """Extract the declared outputs from a parsed response body.

        The body is usually a single ``{action}_response`` element wrapping
        the outputs, eg ``{'get_volume_response': {'current_volume': 12}}``.

        Returns:
            dict: Exactly the declared output arguments. Outputs missing from
            the response are `None`.

        Raises:
            UnexpectedResponseShape: If the body has more than one top level
                element.
        """
        if len(response) > 1:
            raise UnexpectedResponseShape(list(response))
        result = next(iter(response.values()), None)
        if not isinstance(result, dict):
            result = {}
        return {name: result.get(camel_to_underscore(name)) for name in self.out_args}

    def call(self, transport, args, validator_provider, options=None):
        """Invoke the action.

        Args:
            transport: An object with an ``invoke(action_name, args,
                soap_action, options)`` method, usually a `SoapTransport`.
            args (dict): The input arguments, by declared name.
            validator_provider: A `ValidatorProvider` or
                `NoOpValidatorProvider`.
            options (dict, optional): Call options passed on to the
                transport.

        Returns:
            dict: The output arguments, by declared name.
        """
        composed = self.compose_args(dict(args or {}), validator_provider)
        response = transport.invoke(self.name, composed, self.soap_action, options)
        return self.unwrap_arguments(response)


class ControlPoint:
    """A control point for one service on a UPnP device.

    Actions are held in a dispatch table, built once from the description,
    and can be called with `call`, as attributes or by item:

    >>> cp.call("SetVolume", {"InstanceID": 0, "DesiredVolume": 50})
    >>> cp.SetVolume(InstanceID=0, DesiredVolume=50)
    >>> cp["SetVolume"](InstanceID=0, DesiredVolume=50)

    Attributes:
        urn (str): The service type URN.
        service_endpoint (str): The control URL.
        events_endpoint (str): The event subscription URL.
        description (ServiceDescription): The service description.
        transport: The RPC transport used for calls.
        event_client (EventClient): The GENA client for ``events_endpoint``.
    """

    # pylint: disable=too-many-instance-attributes
    # pylint: disable=too-many-arguments
    def __init__(
        self,
        urn,
        service_endpoint,
        events_endpoint,
        description,
        validate_arguments=False,
        advanced_typecasting=True,
        call_options=None,
        transport=None,
        logger=None,
        log_level=None,
    ):
        """
        Args:
            urn (str): The service type URN.
            service_endpoint (str): The control URL.
            events_endpoint (str): The event subscription URL.
            description (ServiceDescription, str, bytes or Element): The
                service description, or the SCPD document to build it from.
            validate_arguments (bool): Validate argument values against
                their state variables before sending. Default `False`.
            advanced_typecasting (bool): Convert booleans and dates in
                responses. Default `True`.
            call_options (dict, optional): Options merged into every call,
                eg ``{"timeout": 5, "http_headers": {...}}``.
            transport (optional): A replacement RPC transport.
            logger (`logging.Logger`, optional): The logger to use.
            log_level (int, optional): A level to set on ``logger``. It is
                ignored when no logger is given, so the module logger is
                left alone.

        Raises:
            UnrecognizedType: If the description uses an unknown data type.
        """
        self._log = logger or log
        if logger is not None and log_level is not None:
            logger.setLevel(log_level)

        if not isinstance(description, ServiceDescription):
            description = ServiceDescription.from_xml(description, urn)
        self.urn = urn
        self.service_endpoint = service_endpoint
        self.events_endpoint = events_endpoint
        self.description = description
        self.validate_arguments = validate_arguments
        self.advanced_typecasting = advanced_typecasting
        self.call_options = dict(call_options or {})

        if transport is None:
            transport = SoapTransport(
                service_endpoint, urn, advanced_typecasting=advanced_typecasting
            )
        self.transport = transport
        self.event_client = EventClient(events_endpoint, logger=logger)

        self._full_validators = ValidatorProvider.from_description(description)
        if validate_arguments:
            self.validator_provider = self._full_validators
        else:
            self.validator_provider = NoOpValidatorProvider()

        self._service_methods = {
            name: ServiceMethod(action, urn)
            for name, action in description.actions.items()
        }

    def __repr__(self):
        return "<{} '{}' at {}>".format(self.__class__.__name__, self.urn, hex(id(self)))

    def __getattr__(self, name):
        """Look an action up in the dispatch table.

        Only called when normal attribute lookup fails.

        Raises:
            UnknownMethod: If there is no such action. This is also an
                `AttributeError`.
        """
        methods = self.__dict__.get("_service_methods")
        if methods is None or name not in methods:
            raise UnknownMethod(name)
        return self._dispatcher(name)

    def __getitem__(self, name):
        self.service_method(name)
        return self._dispatcher(name)

    def __dir__(self):
        return list(super().__dir__()) + self.method_names()

    def _dispatcher(self, name):
        def dispatch(args=None, **kwargs):
            return self.call(name, args, **kwargs)

        dispatch.__name__ = name
        return dispatch

    def method_names(self):
        """list(str): The names of the actions, in document order."""
        return list(self._service_methods)

    def service_method(self, name):
        """Return the `ServiceMethod` for an action.

        Raises:
            UnknownMethod: If there is no such action.
        """
        try:
            return self._service_methods[name]
        except KeyError:
            raise UnknownMethod(name) from None

    def arguments_of(self, name):
        """list(str): The declared input arguments of an action."""
        return self.service_method(name).in_args

    def validator_for(self, method_name, arg_name):
        """Return the `ArgumentValidator` for an argument of an action.

        This works whether or not ``validate_arguments`` is set.

        Raises:
            UnknownMethod: If there is no such action.
            UnknownArgument: If the action has no such argument.
        """
        reference = self.service_method(method_name).arg_reference(arg_name)
        if reference is None:
            raise UnknownArgument(arg_name)
        return self._full_validators.validator(reference)

    @property
    def event_vars(self):
        """list(str): The state variables which send events."""
        return self.description.event_vars

    def call(self, name, args=None, **kwargs):
        """Call an action.

        Args:
            name (str): The action name.
            args (dict, optional): The input arguments. Keyword arguments
                are merged over these.

        Returns:
            dict: The output arguments, by declared name.

        Raises:
            UnknownMethod: If there is no such action.
            UnsupportedArgument: If an argument is not a declared input.
            InvalidArgument: If validation is on and a value is invalid.
            SoapFault: If the device answers with a SOAP fault.
            TransportFailure: On any other non-2xx response.
        """
        method = self.service_method(name)
        arguments = dict(args or {})
        arguments.update(kwargs)
        self._log.debug("Calling %s with %s on %s", name, arguments, self.urn)
        return method.call(
            self.transport, arguments, self.validator_provider, self.options_for(name)
        )

    def options_for(self, name):
        """Compute the options of a call.

        These are the ``call_options``, less the protected ``soap_action``,
        ``namespace`` and ``attributes`` keys, which are always computed
        from the action and the service.
        """
        self.service_method(name)
        return {
            key: value
            for key, value in self.call_options.items()
            if key not in PROTECTED_OPTIONS
        }

    def to_params(self):
        """Return the parameters needed to rebuild this control point.

        See `from_params`.
        """
        return {
            "urn": self.urn,
            "service_endpoint": self.service_endpoint,
            "events_endpoint": self.events_endpoint,
            "description": self.description,
            "options": {
                "validate_arguments": self.validate_arguments,
                "advanced_typecasting": self.advanced_typecasting,
                "call_options": dict(self.call_options),
            },
        }

    @classmethod
    def from_params(cls, params):
        """Build a control point from the output of `to_params`."""
        return cls(
            params["urn"],
            params["service_endpoint"],
            params["events_endpoint"],
            params["description"],
            **params.get("options", {})
        )

    def add_event_callback(self, url, **options):
        """Subscribe to events, delivered to a listener run by the caller.

        Args:
            url (str or callable): The callback URL, or a callable returning
                it. A callable is called each time a new subscription is
                started.
            **options: Keyword arguments for `SubscriptionManager`.

        Returns:
            SubscriptionManager: The started manager.
        """
        options.setdefault("logger", self._log)
        manager = SubscriptionManager(self.event_client, url, **options)
        manager.subscribe()
        return manager

    def on_event(self, callback, listener_options=None, manager_options=None):
        """Subscribe to events, delivered to ``callback``.

        A `NotificationListener` is started to receive them. It is shut
        down when the subscription is cancelled.

        Args:
            callback (callable): Called with each `Event`.
            listener_options (dict, optional): Keyword arguments for
                `NotificationListener`. A ``callback`` given here is called
                before ``callback``.
            manager_options (dict, optional): Keyword arguments for
                `SubscriptionManager`. An ``on_shutdown`` given here is called
                before the listener is shut down.

        Returns:
            SubscriptionManager: The started manager. Call its
            ``unsubscribe`` method to stop receiving events.
        """
        if callback is None:
            raise ValueError("A callback must be provided")

        listener_options = dict(listener_options or {})
        user_callback = listener_options.pop("callback", None)
        listener_options.setdefault("remote_ip", urlparse(self.events_endpoint).hostname)
        listener_options.setdefault("logger", self._log)

        def forward(event):
            if user_callback is not None:
                user_callback(event)
            callback(event)

        listener = NotificationListener(forward, **listener_options)

        manager_options = dict(manager_options or {})
        user_shutdown = manager_options.pop("on_shutdown", None)
        manager_options.setdefault("logger", self._log)

        def on_shutdown():
            if user_shutdown is not None:
                user_shutdown()
            listener.shutdown()

        # The URL is looked up on every subscribe, since the listener may have
        # been restarted on a different port.
        manager = SubscriptionManager(
            self.event_client, listener.listen, on_shutdown=on_shutdown, **manager_options
        )
        manager.subscribe()
        return manager
