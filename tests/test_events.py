"""Tests for the events and events_base modules."""


import logging
import socket
import threading
import time

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from upnpcp import config
from upnpcp.events import (
    EventClient,
    NotificationListener,
    SubscriptionManager,
    parse_timeout,
)
from upnpcp.events_base import (
    Event,
    EventParser,
    SubscriptionState,
    get_listen_ip,
    parse_event_xml,
)
from upnpcp.exceptions import (
    IllegalState,
    MalformedResponse,
    MissingSubscriptionId,
    NotStarted,
    SubscriptionLost,
    TransportFailure,
)

from unittest import mock

EVENT_URL = "http://192.168.1.101:1400/MediaRenderer/RenderingControl/Event"
CALLBACK_URL = "http://192.168.1.50:8000/"

DUMMY_EVENT = """
<e:propertyset xmlns:e="urn:schemas-upnp-org:event-1-0">
    <e:property>
        <Mute>0</Mute>
    </e:property>
</e:propertyset>
"""

TWO_VARIABLE_EVENT = "".join(
    [
        '<e:propertyset xmlns:e="urn:schemas-upnp-org:event-1-0">',
        "<e:property><Volume>42</Volume></e:property>",
        "<e:property><PresetNameList>Main</PresetNameList></e:property>",
        "</e:propertyset>",
    ]
)


# Event parsing


def test_parse_event_xml(event_loader):
    variables = parse_event_xml(event_loader.load_xml("two_variables.xml"))
    assert variables == {
        "Volume": "42",
        "PresetNameList": "FactoryDefaults,InstallationDefaults",
    }


def test_parse_event_xml_keeps_values_as_text(event_loader):
    variables = EventParser().parse(
        event_loader.load_xml("last_change.xml").encode("utf-8")
    )
    assert variables["LastChange"].startswith(
        '<Event xmlns="urn:schemas-upnp-org:metadata-1-0/RCS/">'
    )
    assert variables["SourceProtocolInfo"] == ""


@pytest.mark.parametrize(
    "body",
    [
        "",
        "not xml",
        "<e:propertyset xmlns:e='urn:schemas-upnp-org:event-1-0'><e:property>",
        "<root><other><Volume>1</Volume></other></root>",
        b"\xff\xfe",
    ],
)
def test_parse_malformed_event(body):
    assert parse_event_xml(body) == {}


def test_event_object():
    # Basic initialisation
    dummy_event = Event("123", "456", 123456.7, {"zone": "kitchen"})
    assert dummy_event.sid == "123"
    assert dummy_event.seq == "456"
    assert dummy_event.timestamp == 123456.7
    assert dummy_event.variables == {"zone": "kitchen"}
    # attribute access
    assert dummy_event.zone == "kitchen"
    # mapping access
    assert dummy_event["zone"] == "kitchen"
    assert dict(dummy_event) == {"zone": "kitchen"}
    assert len(dummy_event) == 1
    # Should not access non-existent attributes
    with pytest.raises(AttributeError):
        dummy_event.non_existent  # pylint: disable=pointless-statement
    with pytest.raises(KeyError):
        dummy_event["non_existent"]  # pylint: disable=pointless-statement
    # Should be read only
    with pytest.raises(TypeError):
        dummy_event.new_var = 3
    with pytest.raises(TypeError):
        dummy_event.sid = 1


def test_get_listen_ip():
    assert get_listen_ip("127.0.0.1") == "127.0.0.1"


# EventClient


def gena_response(status_code=200, headers=None, text=""):
    response = mock.MagicMock()
    response.status_code = status_code
    response.headers = CaseInsensitiveDict(headers or {})
    response.text = text
    return response


@pytest.fixture()
def client():
    return EventClient(EVENT_URL)


def test_subscribe(client):
    response = gena_response(headers={"SID": "uuid:123", "TIMEOUT": "Second-1800"})
    with mock.patch("requests.request", return_value=response) as fake_request:
        assert client.subscribe(CALLBACK_URL, 600) == ("uuid:123", 1800)
    fake_request.assert_called_once_with(
        "SUBSCRIBE",
        EVENT_URL,
        headers={
            "CALLBACK": "<{}>".format(CALLBACK_URL),
            "NT": "upnp:event",
            "TIMEOUT": "Second-600",
        },
        timeout=config.REQUEST_TIMEOUT,
    )


def test_subscribe_default_timeout(client):
    response = gena_response(headers={"sid": "uuid:123", "timeout": "second-300"})
    with mock.patch("requests.request", return_value=response) as fake_request:
        assert client.subscribe(CALLBACK_URL) == ("uuid:123", 300)
    headers = fake_request.call_args[1]["headers"]
    assert headers["TIMEOUT"] == "Second-{}".format(config.DEFAULT_REQUESTED_TIMEOUT)


def test_subscribe_without_sid(client):
    response = gena_response(headers={"TIMEOUT": "Second-1800"})
    with mock.patch("requests.request", return_value=response):
        with pytest.raises(MissingSubscriptionId):
            client.subscribe(CALLBACK_URL)


@pytest.mark.parametrize(
    "headers", [{}, {"TIMEOUT": "infinite"}, {"TIMEOUT": "Second-"}]
)
def test_parse_timeout_malformed(headers):
    with pytest.raises(MalformedResponse):
        parse_timeout(CaseInsensitiveDict(headers))


def test_resubscribe(client):
    response = gena_response(headers={"SID": "uuid:123", "TIMEOUT": "Second-1800"})
    with mock.patch("requests.request", return_value=response) as fake_request:
        assert client.resubscribe("uuid:123", 600) == 1800
    fake_request.assert_called_once_with(
        "SUBSCRIBE",
        EVENT_URL,
        headers={"SID": "uuid:123", "TIMEOUT": "Second-600"},
        timeout=config.REQUEST_TIMEOUT,
    )


def test_resubscribe_lost(client):
    response = gena_response(412, text="Precondition Failed")
    with mock.patch("requests.request", return_value=response):
        with pytest.raises(SubscriptionLost) as excinfo:
            client.resubscribe("uuid:123")
    assert excinfo.value.status_code == 412
    assert excinfo.value.body == "Precondition Failed"


@pytest.mark.parametrize("status_code", [400, 404])
def test_resubscribe_unknown_sid(client, status_code):
    # some devices answer an unknown SID with 400 or 404 rather than 412
    with mock.patch("requests.request", return_value=gena_response(status_code)):
        with pytest.raises(SubscriptionLost) as excinfo:
            client.resubscribe("uuid:123")
    assert excinfo.value.status_code == status_code


def test_subscribe_404_is_not_a_lost_subscription(client):
    with mock.patch("requests.request", return_value=gena_response(404)):
        with pytest.raises(TransportFailure) as excinfo:
            client.subscribe(CALLBACK_URL)
    assert not isinstance(excinfo.value, SubscriptionLost)


def test_request_failure(client):
    response = gena_response(500, text="Internal Server Error")
    with mock.patch("requests.request", return_value=response):
        with pytest.raises(TransportFailure) as excinfo:
            client.resubscribe("uuid:123")
    assert not isinstance(excinfo.value, SubscriptionLost)
    assert excinfo.value.status_code == 500


def test_unsubscribe(client):
    with mock.patch("requests.request", return_value=gena_response()) as fake_request:
        client.unsubscribe("uuid:123")
    fake_request.assert_called_once_with(
        "UNSUBSCRIBE",
        EVENT_URL,
        headers={"SID": "uuid:123"},
        timeout=config.REQUEST_TIMEOUT,
    )


# SubscriptionManager


@pytest.fixture()
def event_client():
    """A mock EventClient, for use as a test fixture."""
    fake = mock.Mock()
    fake.events_endpoint = EVENT_URL
    fake.subscribe.return_value = ("uuid:1", 3600)
    fake.resubscribe.return_value = 3600
    return fake


def make_manager(event_client, **kwargs):
    kwargs.setdefault("poll_interval", 0.01)
    return SubscriptionManager(event_client, CALLBACK_URL, **kwargs)


def test_subscribe_is_idempotent(event_client, helpers):
    manager = make_manager(event_client)
    assert manager.subscribe()
    assert manager.subscribe()
    assert helpers.wait_for(lambda: manager.subscription_id == "uuid:1")
    assert manager.state is SubscriptionState.ACTIVE
    event_client.subscribe.assert_called_once_with(
        CALLBACK_URL, config.DEFAULT_REQUESTED_TIMEOUT
    )
    manager.unsubscribe()
    event_client.unsubscribe.assert_called_once_with("uuid:1")


def test_renewal_deadline_ignores_the_wall_clock(event_client):
    manager = make_manager(event_client, resubscription_buffer=10)
    assert manager._store(threading.Event(), "uuid:1", 100)
    remaining = manager._deadline - time.monotonic()
    assert 85 < remaining <= 90
    # a jump of the wall clock does not make renewal due
    with mock.patch("time.time", return_value=time.time() + 3600):
        assert not manager._renewal_due()


def test_log_level_leaves_the_module_logger_alone(event_client):
    module_logger = logging.getLogger("upnpcp.events")
    before = module_logger.level
    make_manager(event_client, log_level=logging.DEBUG)
    assert module_logger.level == before


def test_renews_before_expiry(event_client, helpers):
    # with a buffer as long as the granted time, renewal is always due
    event_client.subscribe.return_value = ("uuid:1", 300)
    event_client.resubscribe.return_value = 300
    manager = make_manager(event_client, requested_timeout=300, resubscription_buffer=300)
    manager.subscribe()
    assert helpers.wait_for(lambda: event_client.resubscribe.call_count >= 2)
    event_client.resubscribe.assert_called_with("uuid:1", 300)
    assert event_client.subscribe.call_count == 1
    manager.unsubscribe()


def test_lost_subscription_is_replaced(event_client, helpers):
    event_client.subscribe.side_effect = [("uuid:1", 10), ("uuid:2", 3600)]
    event_client.resubscribe.side_effect = SubscriptionLost(412, "")
    manager = make_manager(event_client, resubscription_buffer=10)
    manager.subscribe()
    assert helpers.wait_for(lambda: manager.subscription_id == "uuid:2")
    assert event_client.subscribe.call_count == 2
    event_client.resubscribe.assert_called_once_with(
        "uuid:1", config.DEFAULT_REQUESTED_TIMEOUT
    )
    assert manager.state is SubscriptionState.ACTIVE
    assert manager.last_error is None
    manager.unsubscribe()


def test_existing_sid_is_renewed(event_client, helpers):
    manager = make_manager(event_client, existing_sid="uuid:old")
    assert manager.subscription_id == "uuid:old"
    manager.subscribe()
    assert helpers.wait_for(lambda: manager.state is SubscriptionState.ACTIVE)
    event_client.resubscribe.assert_called_once_with(
        "uuid:old", config.DEFAULT_REQUESTED_TIMEOUT
    )
    assert not event_client.subscribe.called
    assert manager.subscription_id == "uuid:old"
    manager.unsubscribe()


def test_lost_existing_sid(event_client, helpers):
    event_client.resubscribe.side_effect = SubscriptionLost(412, "")
    manager = make_manager(event_client, existing_sid="uuid:old")
    manager.subscribe()
    assert helpers.wait_for(lambda: manager.subscription_id == "uuid:1")
    event_client.subscribe.assert_called_once_with(
        CALLBACK_URL, config.DEFAULT_REQUESTED_TIMEOUT
    )
    manager.unsubscribe()


def test_callback_url_is_resolved_on_each_subscribe(event_client, helpers):
    url_provider = mock.Mock(side_effect=["http://10.0.0.2:1/", "http://10.0.0.2:2/"])
    event_client.subscribe.side_effect = [("uuid:1", 10), ("uuid:2", 3600)]
    event_client.resubscribe.side_effect = SubscriptionLost(412, "")
    manager = SubscriptionManager(
        event_client, url_provider, resubscription_buffer=10, poll_interval=0.01
    )
    manager.subscribe()
    assert helpers.wait_for(lambda: manager.subscription_id == "uuid:2")
    assert [c[0][0] for c in event_client.subscribe.call_args_list] == [
        "http://10.0.0.2:1/",
        "http://10.0.0.2:2/",
    ]
    manager.unsubscribe()


def test_unsubscribe_without_subscribe(event_client):
    manager = make_manager(event_client)
    with pytest.raises(IllegalState):
        manager.unsubscribe()


def test_unsubscribe_stops_renewal(event_client, helpers):
    event_client.subscribe.return_value = ("uuid:1", 300)
    event_client.resubscribe.return_value = 300
    on_shutdown = mock.Mock()
    manager = make_manager(
        event_client, resubscription_buffer=300, on_shutdown=on_shutdown
    )
    manager.subscribe()
    assert helpers.wait_for(lambda: event_client.resubscribe.called)
    thread = manager._thread  # pylint: disable=protected-access
    manager.unsubscribe()
    thread.join(1)
    assert not thread.is_alive()

    calls = (event_client.subscribe.call_count, event_client.resubscribe.call_count)
    time.sleep(0.1)
    assert calls == (
        event_client.subscribe.call_count,
        event_client.resubscribe.call_count,
    )
    on_shutdown.assert_called_once_with()
    event_client.unsubscribe.assert_called_once_with("uuid:1")
    assert manager.subscription_id is None
    assert manager.state is SubscriptionState.UNSUBSCRIBED
    with pytest.raises(IllegalState):
        manager.unsubscribe()
    on_shutdown.assert_called_once_with()


def test_unsubscribe_is_best_effort(event_client, helpers):
    event_client.unsubscribe.side_effect = TransportFailure(500, "")
    on_shutdown = mock.Mock(side_effect=RuntimeError("boom"))
    manager = make_manager(event_client, on_shutdown=on_shutdown)
    manager.subscribe()
    assert helpers.wait_for(lambda: manager.subscription_id == "uuid:1")
    manager.unsubscribe()
    event_client.unsubscribe.assert_called_once_with("uuid:1")
    on_shutdown.assert_called_once_with()
    assert manager.state is SubscriptionState.UNSUBSCRIBED


def test_results_after_unsubscribe_are_discarded(event_client, helpers):
    release = threading.Event()

    def slow_subscribe(url, timeout):
        release.wait(2)
        return ("uuid:late", 3600)

    event_client.subscribe.side_effect = slow_subscribe
    manager = make_manager(event_client)
    manager.subscribe()
    assert helpers.wait_for(lambda: event_client.subscribe.called)
    thread = manager._thread  # pylint: disable=protected-access
    manager.unsubscribe()
    release.set()
    thread.join(1)
    assert manager.subscription_id is None
    assert manager.state is SubscriptionState.UNSUBSCRIBED
    assert not event_client.unsubscribe.called


@pytest.mark.filterwarnings("ignore::pytest.PytestUnhandledThreadExceptionWarning")
def test_fatal_error_ends_renewal(event_client, helpers):
    error = TransportFailure(500, "Internal Server Error")
    event_client.subscribe.side_effect = error
    manager = make_manager(event_client)
    manager.subscribe()
    assert helpers.wait_for(lambda: manager.state is SubscriptionState.FAILED)
    assert manager.last_error is error
    assert manager.subscription_id is None
    # no automatic restart, and subscribe() does nothing until unsubscribe()
    manager.subscribe()
    time.sleep(0.05)
    assert event_client.subscribe.call_count == 1
    manager.unsubscribe()
    assert manager.state is SubscriptionState.UNSUBSCRIBED


# NotificationListener


def notify(url, body=DUMMY_EVENT, method="NOTIFY"):
    return requests.request(
        method,
        url,
        headers={
            "Content-Type": 'text/xml; charset="utf-8"',
            "NT": "upnp:event",
            "NTS": "upnp:propchange",
            "SID": "uuid:123",
            "SEQ": "0",
        },
        data=body.encode("utf-8"),
        timeout=2,
    )


@pytest.fixture()
def listener():
    received = []
    listener = NotificationListener(received.append, listen_ip="127.0.0.1")
    listener.received = received
    yield listener
    if listener.is_running:
        listener.shutdown()


def test_listener_delivers_events(listener):
    url = listener.listen()
    assert url.startswith("http://127.0.0.1:")
    assert listener.address[1] != 0
    assert listener.url == url
    # listening again is a no-op
    assert listener.listen() == url

    response = notify(url, TWO_VARIABLE_EVENT)
    assert response.status_code == 200
    assert len(listener.received) == 1
    event = listener.received[0]
    assert event.sid == "uuid:123"
    assert event.seq == "0"
    assert event.timestamp <= time.time()
    assert dict(event) == {"Volume": "42", "PresetNameList": "Main"}



def test_listener_answers_500_when_the_callback_fails():
    listener = NotificationListener(
        mock.Mock(side_effect=ValueError("boom")), listen_ip="127.0.0.1"
    )
    url = listener.listen()
    try:
        assert notify(url).status_code == 500
    finally:
        listener.shutdown()


def test_listener_rejects_a_bad_content_length(listener):
    listener.listen()
    request = (
        "NOTIFY / HTTP/1.1\r\n"
        "Host: 127.0.0.1\r\n"
        "Content-Length: twelve\r\n"
        "\r\n"
    )
    with socket.create_connection(listener.address, timeout=2) as sock:
        sock.sendall(request.encode("ascii"))
        status_line = sock.makefile("rb").readline()
    assert status_line.split()[1] == b"400"
    assert listener.received == []


def test_listener_only_accepts_notify(listener):
    url = listener.listen()
    assert notify(url, method="GET").status_code == 501
    assert listener.received == []


def test_listener_lifecycle(listener):
    with pytest.raises(NotStarted):
        listener.url
    with pytest.raises(IllegalState):
        listener.shutdown()
    listener.listen()
    listener.shutdown()
    assert not listener.is_running
    with pytest.raises(NotStarted):
        listener.url
    # it can be started again
    url = listener.listen()
    assert notify(url).status_code == 200
    assert listener.received[0]["Mute"] == "0"


def test_advertised_address():
    listener = NotificationListener(listen_ip="127.0.0.1", advertise_ip="192.168.1.5")
    url = listener.listen()
    try:
        assert url == "http://192.168.1.5:{}/".format(listener.address[1])
    finally:
        listener.shutdown()

    # pylint: disable=protected-access
    assert NotificationListener(listen_ip="0.0.0.0")._advertised_ip() == "127.0.0.1"
    with mock.patch("upnpcp.events.get_listen_ip", return_value="192.168.1.20"):
        listener = NotificationListener(listen_ip="0.0.0.0", remote_ip="192.168.1.101")
        assert listener._advertised_ip() == "192.168.1.20"


def test_notification_without_callback():
    listener = NotificationListener()
    headers = CaseInsensitiveDict({"SID": "uuid:1", "SEQ": "3"})
    assert listener.handle_notification(headers, DUMMY_EVENT.encode("utf-8")) == 200
