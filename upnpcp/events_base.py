"""Event parsing and the data structures shared by :py:mod:`upnpcp.events`."""


import enum
import logging
import socket
from collections.abc import Mapping

from .xml import XML, fromstring_lenient, local_name

log = logging.getLogger(__name__)  # pylint: disable=C0103


def parse_event_xml(xml_event):
    """Parse the body of a UPnP event.

    An event body is a property set, with one ``<e:property>`` per changed
    state variable::

        <e:propertyset xmlns:e="urn:schemas-upnp-org:event-1-0">
            <e:property>
                <Volume>42</Volume>
            </e:property>
        </e:propertyset>

    Args:
        xml_event (bytes or str): The body of the event, utf-8 if bytes.

    Returns:
        dict: A dict with keys representing the evented variables and values
        their new text (``""`` for empty elements). Malformed or
        unrecognised documents give an empty dict.
    """

    result = {}
    try:
        tree = fromstring_lenient(xml_event)
    except XML.ParseError:
        log.debug("Could not parse event body: %r", xml_event)
        return result
    # property values are just under the propertyset. Devices differ in
    # whether they qualify <property> with the event namespace.
    for prop in tree:
        if local_name(prop.tag) != "property":
            continue
        for variable in prop:
            result[local_name(variable.tag)] = variable.text or ""
    return result


class EventParser:
    """Turns notification bodies into ``{variable name: value}`` dicts."""

    # pylint: disable=no-self-use
    def parse(self, event_xml):
        """See `parse_event_xml`."""
        return parse_event_xml(event_xml)


class Event(Mapping):
    """A read-only object representing a received event.

    The values of the evented variables can be accessed like a dict, via the
    ``variables`` dict, or as attributes on the instance itself. You should
    treat all attributes as read-only.

    Args:
        sid (str): the subscription id.
        seq (str): the event sequence number for that subscription.
        timestamp (float): the time that the event was received (from
            Python's `time.time` function).
        variables (dict, optional): contains the ``{names: values}`` of the
            evented variables. Defaults to `None`.

    Raises:
        AttributeError:  Not all attributes are returned with each event. An
            `AttributeError` will be raised if you attempt to access as an
            attribute a variable which was not returned in the event.

    Example:

        >>> print(event["TransportState"])
        'STOPPED'
        >>> print(event.TransportState)
        'STOPPED'

    """

    # pylint: disable=too-few-public-methods

    def __init__(self, sid, seq, timestamp, variables=None):
        # Initialisation has to be done like this, because __setattr__ is
        # overridden, and will not allow direct setting of attributes
        self.__dict__["sid"] = sid
        self.__dict__["seq"] = seq
        self.__dict__["timestamp"] = timestamp
        self.__dict__["variables"] = dict(variables) if variables is not None else {}

    def __getattr__(self, name):
        if name in self.variables:
            return self.variables[name]
        raise AttributeError("No such attribute: %s" % name)

    def __setattr__(self, name, value):
        """Disable (most) attempts to set attributes.

        This is not completely foolproof. It just acts as a warning! See
        `object.__setattr__`.
        """
        raise TypeError("Event object does not support attribute assignment")

    def __getitem__(self, name):
        return self.variables[name]

    def __iter__(self):
        return iter(self.variables)

    def __len__(self):
        return len(self.variables)

    def __repr__(self):
        return "<{} sid={} seq={} {}>".format(
            self.__class__.__name__, self.sid, self.seq, self.variables
        )


class SubscriptionState(enum.Enum):
    """The states of a :class:`~upnpcp.events.SubscriptionManager`."""

    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    RENEWING = "renewing"
    FAILED = "failed"


class RenewResult(enum.Enum):
    """The outcome of a renewal which did not fail fatally."""

    RENEWED = "renewed"
    #: The device no longer knows the subscription.
    LOST = "lost"


def get_listen_ip(ip_address, port=1900):
    """Find the local IP address from which ``ip_address`` is reachable.

    No packets are sent.

    Returns:
        str: the local address, or `None` if there is no route.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect((ip_address, port))
        return sock.getsockname()[0]
    except OSError:
        return None
    finally:
        sock.close()
