"""upnpcp is a UPnP control point library: it calls the actions of UPnP
services and subscribes to their events."""


import logging

from .description import ServiceDescription
from .events import EventClient, NotificationListener, SubscriptionManager
from .events_base import Event, EventParser
from .exceptions import UPnPException
from .services import ControlPoint, ServiceMethod
from .validators import ArgumentValidator, ValidatorProvider

# Will be parsed by setup.py to determine package metadata
__author__ = "The upnpcp developers"
# Please increment the version number and add the suffix "-dev" after
# a release, to make it possible to identify in-development code
__version__ = "0.1.0"
__license__ = "MIT License"

# You really should not `import *` - it is poor practice
# but if you do, here is what you get:
__all__ = [
    "ArgumentValidator",
    "ControlPoint",
    "Event",
    "EventClient",
    "EventParser",
    "NotificationListener",
    "ServiceDescription",
    "ServiceMethod",
    "SubscriptionManager",
    "UPnPException",
    "ValidatorProvider",
]

# http://docs.python.org/2/howto/logging.html#library-config
# Avoids spurious error messages if no logger is configured by the user

logging.getLogger(__name__).addHandler(logging.NullHandler())
