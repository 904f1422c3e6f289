# pylint: disable=not-context-manager

"""Classes to handle UPnP event subscriptions and notifications.

Three pieces work together to receive events from a service:

* `EventClient` sends the GENA ``SUBSCRIBE`` and ``UNSUBSCRIBE`` requests.
* `SubscriptionManager` keeps one subscription alive from a background
  thread, renewing it shortly before it expires and starting a new one if
  the device forgets it.
* `NotificationListener` runs an http server in a thread which is an
  endpoint for the ``NOTIFY`` requests sent by the device.

:meth:`upnpcp.services.ControlPoint.on_event` wires them together.

Example:

    Run this code, and change the volume on the device::

        import logging
        logging.basicConfig(level=logging.DEBUG)
        from upnpcp.events import (
            EventClient, NotificationListener, SubscriptionManager)

        listener = NotificationListener(
            lambda event: print(event.sid, event.seq, dict(event)),
            remote_ip="192.168.1.102",
        )
        manager = SubscriptionManager(
            EventClient(
                "http://192.168.1.102:1400/MediaRenderer/RenderingControl/Event"),
            listener.listen,
            on_shutdown=listener.shutdown,
        )
        manager.subscribe()
        try:
            input("Press enter to stop")
        finally:
            manager.unsubscribe()

"""


import errno
import logging
import re
import socketserver
import threading
import time
from http.server import BaseHTTPRequestHandler

import requests

from . import config
from .events_base import (
    Event,
    EventParser,
    RenewResult,
    SubscriptionState,
    get_listen_ip,
)
from .exceptions import (
    IllegalState,
    MalformedResponse,
    MissingSubscriptionId,
    NotStarted,
    SubscriptionLost,
    TransportFailure,
)

log = logging.getLogger(__name__)  # pylint: disable=C0103

TIMEOUT_RE = re.compile(r"Second-(\d+)", re.IGNORECASE)

# Statuses some devices send for an unknown SID on renewal, besides 412
LOST_SID_STATUSES = (400, 404)


def parse_timeout(headers):
    """Return the granted subscription duration from response headers.

    Raises:
        MalformedResponse: If the ``TIMEOUT`` header is missing, or is not
            of the form ``Second-123``.
    """
    timeout = headers.get("timeout")
    if timeout is None:
        raise MalformedResponse("No TIMEOUT header in response")
    match = TIMEOUT_RE.search(timeout)
    if match is None:
        raise MalformedResponse("Unrecognised TIMEOUT header: {}".format(timeout))
    return int(match.group(1))


class EventClient:
    """Sends GENA requests to a service's event subscription URL."""

    def __init__(self, events_endpoint, logger=None):
        """
        Args:
            events_endpoint (str): The event subscription URL.
            logger (`logging.Logger`, optional): The logger to use.
        """
        self.events_endpoint = events_endpoint
        self._log = logger or log

    def __repr__(self):
        return "<{} '{}' at {}>".format(
            self.__class__.__name__, self.events_endpoint, hex(id(self))
        )

    def _request(self, method, headers, lost_statuses=()):
        """Send a request and check its status.

        Args:
            lost_statuses (tuple): Statuses, in addition to 412, which mean
                the SID is unknown.

        Raises:
            SubscriptionLost: On a 412 Precondition Failed response, or one
                of ``lost_statuses``.
            TransportFailure: On any other non-2xx response.
        """
        self._log.debug("Sending %s to %s: %s", method, self.events_endpoint, headers)
        response = requests.request(
            method,
            self.events_endpoint,
            headers=headers,
            timeout=config.REQUEST_TIMEOUT,
        )
        self._log.debug(
            "Received %s for %s: %s", response.status_code, method, response.headers
        )
        status = response.status_code
        if status == 412 or status in lost_statuses:
            raise SubscriptionLost(status, response.text)
        if not 200 <= status < 300:
            raise TransportFailure(status, response.text)
        return response

    def subscribe(self, callback_url, timeout=None):
        """Start a new subscription.

        Args:
            callback_url (str): The URL events should be sent to.
            timeout (int, optional): The requested duration in seconds.
                Defaults to `config.DEFAULT_REQUESTED_TIMEOUT`.

        Returns:
            tuple: ``(sid, granted_timeout)``.

        Raises:
            MissingSubscriptionId: If the response has no ``SID``.
            MalformedResponse: If the ``TIMEOUT`` cannot be parsed.
        """
        if timeout is None:
            timeout = config.DEFAULT_REQUESTED_TIMEOUT
        # An event subscription looks like this:
        # SUBSCRIBE publisher path HTTP/1.1
        # HOST: publisher host:publisher port
        # CALLBACK: <delivery URL>
        # NT: upnp:event
        # TIMEOUT: Second-requested subscription duration (optional)
        headers = {
            "CALLBACK": "<{}>".format(callback_url),
            "NT": "upnp:event",
            "TIMEOUT": "Second-{}".format(timeout),
        }
        response = self._request("SUBSCRIBE", headers)
        sid = response.headers.get("sid")
        if not sid:
            raise MissingSubscriptionId(
                "No SID in response from {}".format(self.events_endpoint)
            )
        return sid, parse_timeout(response.headers)

    def resubscribe(self, sid, timeout=None):
        """Renew a subscription.

        A renewal carries only ``SID`` and ``TIMEOUT``; ``CALLBACK`` and
        ``NT`` must not be sent.

        Returns:
            int: The granted duration in seconds.

        Raises:
            SubscriptionLost: If the device no longer knows ``sid``. This is
                a 412 response, or a 400 or 404 which some devices send
                instead.
        """
        if timeout is None:
            timeout = config.DEFAULT_REQUESTED_TIMEOUT
        headers = {"SID": sid, "TIMEOUT": "Second-{}".format(timeout)}
        response = self._request("SUBSCRIBE", headers, LOST_SID_STATUSES)
        return parse_timeout(response.headers)

    def unsubscribe(self, sid):
        """Cancel a subscription."""
        self._request("UNSUBSCRIBE", {"SID": sid})


class SubscriptionManager:
    """Keeps an event subscription alive from a background thread.

    The thread subscribes, then renews the subscription shortly before the
    time granted by the device runs out. If the device has forgotten the
    subscription, for example after a reboot, a new one is started. Any
    other error ends the thread. `state` and `last_error` then show what
    happened.

    Attributes:
        state (SubscriptionState): Where the subscription is in its life.
        last_error (Exception): The error which ended the renewal thread, if
            any.
    """

    # pylint: disable=too-many-instance-attributes
    # pylint: disable=too-many-arguments
    def __init__(
        self,
        event_client,
        callback_url,
        requested_timeout=None,
        resubscription_buffer=None,
        existing_sid=None,
        on_shutdown=None,
        logger=None,
        log_level=None,
        poll_interval=1,
    ):
        """
        Args:
            event_client (EventClient): Sends the GENA requests.
            callback_url (str or callable): The URL events should be sent to,
                or a callable returning it. A callable is called each time a
                new subscription is started.
            requested_timeout (int, optional): The duration to request, in
                seconds. Defaults to `config.DEFAULT_REQUESTED_TIMEOUT`.
            resubscription_buffer (int, optional): How many seconds before
                expiry to renew. Defaults to
                `config.DEFAULT_RESUBSCRIPTION_BUFFER`.
            existing_sid (str, optional): A subscription to take over. It is
                renewed rather than a new one being started.
            on_shutdown (callable, optional): Called after `unsubscribe`.
            logger (`logging.Logger`, optional): The logger to use.
            log_level (int, optional): A level to set on ``logger``. It is
                ignored when no logger is given.
            poll_interval (float): How often, in seconds, the thread checks
                whether renewal is due.
        """
        self.event_client = event_client
        self._callback_url = callback_url
        if requested_timeout is None:
            requested_timeout = config.DEFAULT_REQUESTED_TIMEOUT
        self.requested_timeout = requested_timeout
        if resubscription_buffer is None:
            resubscription_buffer = config.DEFAULT_RESUBSCRIPTION_BUFFER
        self.resubscription_buffer = resubscription_buffer
        self.on_shutdown = on_shutdown
        self.poll_interval = poll_interval
        self._log = logger or log
        if logger is not None and log_level is not None:
            logger.setLevel(log_level)

        self.state = SubscriptionState.UNSUBSCRIBED
        self.last_error = None
        self._sid = existing_sid
        self._deadline = None
        self._thread = None
        self._stop_flag = threading.Event()
        # Used to stop race conditions between the renewal thread and
        # unsubscribe
        self._lock = threading.Lock()

    def __repr__(self):
        return "<{} sid={} state={} at {}>".format(
            self.__class__.__name__, self._sid, self.state.value, hex(id(self))
        )

    @property
    def callback_url(self):
        """str: The callback URL, resolved now."""
        url = self._callback_url
        return url() if callable(url) else url

    @property
    def subscription_id(self):
        """str: The current SID, or `None`."""
        with self._lock:
            return self._sid

    def subscribe(self):
        """Start the renewal thread.

        Calling this again while a thread is held does nothing, even if that
        thread has ended with an error. Call `unsubscribe` first to start
        over.

        Returns:
            bool: `True`.
        """
        with self._lock:
            if self._thread is not None:
                self._log.debug("Subscription thread already running")
                return True
            self._stop_flag = threading.Event()
            self.last_error = None
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_flag,),
                name="SubscriptionManager-{}".format(self.event_client.events_endpoint),
            )
            self._thread.daemon = True
            self._thread.start()
        return True

    def unsubscribe(self):
        """Stop renewing and cancel the subscription.

        The ``UNSUBSCRIBE`` request and the ``on_shutdown`` hook are best
        effort. Their failures are logged, not raised.

        Raises:
            IllegalState: If no renewal thread is held.
        """
        with self._lock:
            if self._thread is None:
                raise IllegalState("No active subscription to unsubscribe")
            self._stop_flag.set()
            self._thread = None
            sid = self._sid
            self._sid = None
            self._deadline = None

        if sid is not None:
            try:
                self.event_client.unsubscribe(sid)
            except Exception:  # pylint: disable=broad-except
                self._log.exception("Error unsubscribing SID %s", sid)

        with self._lock:
            self.state = SubscriptionState.UNSUBSCRIBED

        if self.on_shutdown is not None:
            try:
                self.on_shutdown()
            except Exception:  # pylint: disable=broad-except
                self._log.exception("Error in subscription shutdown hook")

    def _run(self, stop_flag):
        """The renewal loop, run in the background thread."""
        self._log.info("Starting subscription to %s", self.event_client)
        try:
            if self.subscription_id is None:
                self._start(stop_flag)
            else:
                self._renew(stop_flag)
            while not stop_flag.wait(self.poll_interval):
                if self._renewal_due():
                    self._renew(stop_flag)
        except Exception as exc:  # pylint: disable=broad-except
            if stop_flag.is_set():
                self._log.debug("Ignoring error after unsubscribe: %s", exc)
                return
            self._log.exception(
                "Subscription to %s failed, no longer renewing", self.event_client
            )
            with self._lock:
                self._sid = None
                self._deadline = None
                self.last_error = exc
                self.state = SubscriptionState.FAILED
            raise
        self._log.info("Ended subscription to %s", self.event_client)

    def _renewal_due(self):
        with self._lock:
            return self._deadline is not None and time.monotonic() >= self._deadline

    def _set_state(self, stop_flag, state):
        with self._lock:
            if not stop_flag.is_set():
                self.state = state

    def _store(self, stop_flag, sid, granted):
        """Record a subscription, unless unsubscribe has been called."""
        with self._lock:
            if stop_flag.is_set():
                self._log.debug("Discarding SID %s received after unsubscribe", sid)
                return False
            self._sid = sid
            self._deadline = time.monotonic() + granted - self.resubscription_buffer
            self.state = SubscriptionState.ACTIVE
            return True

    def _start(self, stop_flag):
        self._set_state(stop_flag, SubscriptionState.SUBSCRIBING)
        sid, granted = self.event_client.subscribe(
            self.callback_url, self.requested_timeout
        )
        if self._store(stop_flag, sid, granted):
            self._log.info("Subscribed with SID %s for %s seconds", sid, granted)

    def _try_resubscribe(self, stop_flag):
        """Renew the current SID.

        Returns:
            RenewResult: `RenewResult.LOST` if the device no longer knows
            the SID. Other errors are raised.
        """
        sid = self.subscription_id
        self._set_state(stop_flag, SubscriptionState.RENEWING)
        try:
            granted = self.event_client.resubscribe(sid, self.requested_timeout)
        except SubscriptionLost:
            return RenewResult.LOST
        if self._store(stop_flag, sid, granted):
            self._log.debug("Renewed SID %s for %s seconds", sid, granted)
        return RenewResult.RENEWED

    def _renew(self, stop_flag):
        if self._try_resubscribe(stop_flag) is RenewResult.LOST:
            self._log.warning(
                "Subscription %s was lost, starting a new one", self.subscription_id
            )
            with self._lock:
                if stop_flag.is_set():
                    return
                self._sid = None
                self._deadline = None
            self._start(stop_flag)


class EventServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    """A TCP server which handles each new request in a new thread."""

    allow_reuse_address = True
    daemon_threads = True

    def __init__(self, server_address, handler_class, listener):
        #: `NotificationListener`: receives the notifications.
        self.listener = listener
        super().__init__(server_address, handler_class)


class EventNotifyHandler(BaseHTTPRequestHandler):
    """Handles HTTP ``NOTIFY`` Verbs sent to the listener server.

    Other methods are answered with 501 Not Implemented.
    """

    def do_NOTIFY(self):  # pylint: disable=invalid-name
        """Serve a ``NOTIFY`` request by passing the headers and content to
        the listener."""
        headers = requests.structures.CaseInsensitiveDict(self.headers)
        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            self.send_error(400, "Invalid Content-Length")
            return
        content = self.rfile.read(content_length)
        status = self.server.listener.handle_notification(headers, content)
        self.send_response(status)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, fmt, *args):  # pylint: disable=arguments-differ
        # Divert standard webserver logging to the debug log
        log.debug(fmt, *args)


class EventServerThread(threading.Thread):
    """The thread in which the event listener server will run."""

    def __init__(self, server):
        """
        Args:
            server (EventServer): The server to run.
        """
        super().__init__()
        #: `threading.Event`: Used to signal that the server should stop.
        self.stop_flag = threading.Event()
        self.server = server

    def run(self):
        """Start the server

        Handling of requests is delegated to an instance of the
        `EventNotifyHandler` class.
        """
        log.debug("Event listener running on %s", self.server.server_address)
        # Listen for events until told to stop. handle_request returns after
        # server.timeout when nothing arrives.
        while not self.stop_flag.is_set():
            self.server.handle_request()

    def stop(self):
        """Stop the server."""
        self.stop_flag.set()


class NotificationListener:
    """Receives event notifications and passes them to a callback.

    Runs an http server in a thread which is an endpoint for ``NOTIFY``
    requests. Each one is parsed into an `Event` and given to the callback
    on the server's thread. Make sure that your firewall allows connections
    to the port.
    """

    #: How often, in seconds, the server thread checks whether to stop.
    poll_interval = 0.5

    # pylint: disable=too-many-instance-attributes
    # pylint: disable=too-many-arguments
    def __init__(
        self,
        callback=None,
        listen_ip=None,
        listen_port=None,
        advertise_ip=None,
        remote_ip=None,
        logger=None,
        parser=None,
    ):
        """
        Args:
            callback (callable, optional): Called with each `Event`.
            listen_ip (str, optional): The address to bind. Defaults to
                `config.EVENT_LISTENER_IP`.
            listen_port (int, optional): The port to bind, 0 for any free
                port. Defaults to `config.EVENT_LISTENER_PORT`. If a given
                port is in use, the next 100 are tried.
            advertise_ip (str, optional): The address put in the callback
                URL. Defaults to `config.EVENT_ADVERTISE_IP`.
            remote_ip (str, optional): The device's address, used to find
                the local address to advertise.
            logger (`logging.Logger`, optional): The logger to use.
            parser (EventParser, optional): Parses notification bodies.
        """
        self.callback = callback
        self.listen_ip = config.EVENT_LISTENER_IP if listen_ip is None else listen_ip
        self.listen_port = (
            config.EVENT_LISTENER_PORT if listen_port is None else listen_port
        )
        self.advertise_ip = (
            config.EVENT_ADVERTISE_IP if advertise_ip is None else advertise_ip
        )
        self.remote_ip = remote_ip
        self.parser = parser or EventParser()
        self._log = logger or log
        #: tuple: The ``(ip, port)`` the server is bound to, when running.
        self.address = None
        self._url = None
        self._server = None
        self._thread = None
        self._lock = threading.Lock()

    def __repr__(self):
        return "<{} address={} at {}>".format(
            self.__class__.__name__, self.address, hex(id(self))
        )

    @property
    def is_running(self):
        """bool: Whether the server is running."""
        return self._thread is not None

    @property
    def url(self):
        """str: The callback URL, ``http://{ip}:{port}/``.

        Raises:
            NotStarted: If the listener is not running.
        """
        with self._lock:
            if self._url is None:
                raise NotStarted("The notification listener has not been started")
            return self._url

    def listen(self):
        """Start the server, if it is not already running.

        Returns:
            str: The callback URL.
        """
        with self._lock:
            if self._thread is None:
                self._start()
            return self._url

    def _start(self):
        server = self._bind()
        server.timeout = self.poll_interval
        self._server = server
        self.address = server.server_address[:2]
        self._url = "http://{}:{}/".format(self._advertised_ip(), self.address[1])
        self._thread = EventServerThread(server)
        self._thread.daemon = True
        self._thread.start()
        self._log.info("Listening for events on %s", self._url)

    def _bind(self):
        if not self.listen_port:
            return EventServer((self.listen_ip, 0), EventNotifyHandler, self)
        for port_number in range(self.listen_port, self.listen_port + 100):
            try:
                return EventServer(
                    (self.listen_ip, port_number), EventNotifyHandler, self
                )
            except OSError as oserror:
                if oserror.errno != errno.EADDRINUSE:
                    raise
                self._log.debug("Port %s:%d is in use", self.listen_ip, port_number)
        raise OSError(
            errno.EADDRINUSE,
            "No free port in {}-{}".format(self.listen_port, self.listen_port + 99),
        )

    def _advertised_ip(self):
        if self.advertise_ip:
            return self.advertise_ip
        if self.listen_ip not in ("", "0.0.0.0"):
            return self.listen_ip
        if self.remote_ip:
            ip_address = get_listen_ip(self.remote_ip)
            if ip_address:
                return ip_address
            self._log.warning("Could not find a route to %s", self.remote_ip)
        return "127.0.0.1"

    def shutdown(self):
        """Stop the server.

        It can be started again with `listen`, possibly on a different port.

        Raises:
            IllegalState: If the listener is not running.
        """
        with self._lock:
            if self._thread is None:
                raise IllegalState("The notification listener is not running")
            thread, server = self._thread, self._server
            self._thread = self._server = self._url = self.address = None

        # Signal the thread to stop before handling the next request
        thread.stop()
        # wait for the thread to finish, with a timeout of one second
        # to ensure the main thread does not hang
        thread.join(1)
        # check if join timed out and issue a warning if it did
        if thread.is_alive():
            self._log.warning("Notification listener did not shutdown gracefully.")
        server.server_close()
        self._log.info("Stopped listening for events")

    def handle_notification(self, headers, content):
        """Turn a notification into an `Event` and pass it to the callback.

        Args:
            headers (dict): The request headers, with case insensitive keys.
            content (bytes): The request body.

        Returns:
            int: The http status to answer with, 200, or 500 if the callback
            raised.
        """
        timestamp = time.time()
        event = Event(
            headers.get("sid"),
            headers.get("seq"),
            timestamp,
            self.parser.parse(content),
        )
        self._log.debug(
            "Event %s received for %s on thread %s at %s",
            event.seq,
            event.sid,
            threading.current_thread(),
            timestamp,
        )
        if self.callback is None:
            return 200
        try:
            self.callback(event)
        except Exception:  # pylint: disable=broad-except
            self._log.exception("Error in event callback for %s", event.sid)
            return 500
        return 200
