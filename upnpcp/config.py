"""This module contains configuration variables.

They may be set by your code as follows::

    from upnpcp import config
    ...
    config.VARIABLE = value

Values are read when an object is created, so changes only affect objects
created afterwards. Most of them can also be overridden with keyword
arguments.
"""

REQUEST_TIMEOUT = 20.0
"""The timeout (in seconds) used for SOAP and GENA requests.

It can be a float, an int, or None. If set to 'None', calls can potentially
wait indefinitely. It can be overridden for SOAP calls with the ``timeout``
call option.
"""

DEFAULT_REQUESTED_TIMEOUT = 300
"""The subscription duration (seconds) requested from devices.

The device is free to grant a different duration.

See also:
    The :mod:`upnpcp.events` module.
"""

DEFAULT_RESUBSCRIPTION_BUFFER = 10
"""How many seconds before a subscription expires it will be renewed."""

EVENT_LISTENER_IP = "0.0.0.0"
"""The IP on which the notification listener listens.

The default binds all interfaces.
"""

EVENT_LISTENER_PORT = 0
"""The port on which the notification listener listens.

The default of 0 lets the operating system choose a free ephemeral port.
"""

EVENT_ADVERTISE_IP = None
"""The IP to advertise to devices in the ``CALLBACK`` header.

The default of None means that the relevant IP address will be detected
automatically.
"""
