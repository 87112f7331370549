import asyncio
import json
import logging
import sys

import httpx
import pytest

from shared.logging_config import JSONFormatter
from shared.metrics import Histogram, MetricsRegistry
from shared.utils import settings, UpstreamException

from marketplace.integrations import (
    EmailSender, ImageHost, NotificationHub, ADMIN_ROOM, user_room
)
from marketplace.routers.realtime import stop_sender

from conftest import run


# --- Notification hub ---

def test_rooms_route_events():
    hub = NotificationHub()
    everyone = hub.subscribe()
    admin = hub.subscribe(ADMIN_ROOM)
    alice = hub.subscribe(user_room("alice"))

    assert hub.emit("stock:changed", {"product_id": "p1", "stock": 3}) == 3
    assert hub.emit("order:new", {"id": "o1"}, room=ADMIN_ROOM) == 1
    assert hub.emit("order:status", {"id": "o1"}, room=user_room("alice")) == 1
    assert hub.emit("order:status", {"id": "o2"}, room=user_room("bob")) == 0

    assert everyone.qsize() == 1
    assert admin.qsize() == 2
    assert alice.qsize() == 2
    message = alice.get_nowait()
    assert message["event"] == "stock:changed"
    assert message["data"] == {"product_id": "p1", "stock": 3}
    assert "timestamp" in message


def test_full_queue_drops_without_blocking():
    hub = NotificationHub(queue_size=2)
    queue = hub.subscribe()
    delivered = [hub.emit("tick", {"n": n}) for n in range(4)]
    assert delivered == [1, 1, 0, 0]
    assert queue.qsize() == 2


def test_unsubscribe():
    hub = NotificationHub()
    queue = hub.subscribe()
    assert hub.subscriber_count == 1
    hub.unsubscribe(queue)
    hub.unsubscribe(queue)
    assert hub.subscriber_count == 0
    assert hub.emit("tick", {}) == 0


# --- Email ---

def test_email_disabled_is_a_logged_no_op(caplog):
    sender = EmailSender(settings.model_copy(update={"EMAIL_API_URL": None}))
    with caplog.at_level(logging.INFO, logger="marketplace.integrations"):
        sent = run(sender.send("buyer@example.com", "Order confirmed", "order_confirmation", {}))
    assert sent is False
    assert "Email disabled" in caplog.text


def test_email_without_recipient():
    sender = EmailSender(settings.model_copy(update={"EMAIL_API_URL": "http://mail.local/send"}))
    assert run(sender.send("", "s", "t", {})) is False


@pytest.fixture
def mail_transport(monkeypatch):
    requests = []

    def handler(request):
        requests.append(request)
        if request.url.path == "/fail":
            return httpx.Response(502)
        return httpx.Response(202, json={"queued": True})

    transport = httpx.MockTransport(handler)
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        "marketplace.integrations.httpx.AsyncClient",
        lambda **kwargs: real_client(transport=transport, **kwargs)
    )
    return requests


def test_email_posts_payload(mail_transport):
    config = settings.model_copy(update={"EMAIL_API_URL": "http://mail.local/send", "EMAIL_API_KEY": "k"})
    sent = run(EmailSender(config).send("buyer@example.com", "Order confirmed", "order_confirmation",
                                        {"order_number": "DENTAL-260101-0001"}))
    assert sent is True
    request = mail_transport[0]
    assert request.headers["Authorization"] == "Bearer k"
    body = json.loads(request.content)
    assert body["to"] == "buyer@example.com"
    assert body["template"] == "order_confirmation"
    assert body["context"]["order_number"] == "DENTAL-260101-0001"


def test_email_upstream_failure_is_swallowed(mail_transport):
    config = settings.model_copy(update={"EMAIL_API_URL": "http://mail.local/fail"})
    assert run(EmailSender(config).send("buyer@example.com", "s", "t", {})) is False


# --- Image host ---

@pytest.fixture
def image_transport(monkeypatch):
    requests = []

    def handler(request):
        requests.append(request)
        if request.method == "POST":
            return httpx.Response(200, json={"public_id": "img-1", "secure_url": "https://cdn.local/img-1.png"})
        return httpx.Response(404)

    transport = httpx.MockTransport(handler)
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        "marketplace.integrations.httpx.AsyncClient",
        lambda **kwargs: real_client(transport=transport, **kwargs)
    )
    return requests


def test_image_upload_and_failed_delete(image_transport):
    host = ImageHost(settings.model_copy(update={"IMAGE_HOST_URL": "http://images.local/"}))
    uploaded = run(host.upload(b"\x89PNG", "tray.png"))
    deleted = run(host.delete("img-1"))
    assert uploaded == {"public_id": "img-1", "url": "https://cdn.local/img-1.png"}
    assert image_transport[0].url == "http://images.local/upload"
    assert deleted is False
    assert image_transport[1].url.path == "/images/img-1"


def test_image_host_disabled():
    host = ImageHost(settings.model_copy(update={"IMAGE_HOST_URL": None}))
    with pytest.raises(UpstreamException):
        run(host.upload(b"x", "x.png"))
    assert run(host.delete("img-1")) is False


# --- Metrics ---

def test_histogram_buckets():
    hist = Histogram(buckets=(10, 100))
    for value in (5, 10, 50, 500):
        hist.observe(value)
    snap = hist.snapshot()
    assert snap["buckets"] == {"le_10": 2, "le_100": 1, "inf": 1}
    assert snap["count"] == 4
    assert snap["max"] == 500
    assert snap["avg"] == 141.25


def test_registry_snapshot():
    metrics = MetricsRegistry(slow_request_ms=100)
    metrics.record_request("GET", "/api/products", 200, 12.5)
    metrics.record_request("GET", "/api/products", 200, 150.0, request_id="req-1")
    metrics.record_request("POST", "/api/orders", 500, 30.0)
    metrics.increment("orders.created")
    metrics.increment("orders.created", 2)

    snap = metrics.snapshot()
    assert snap["total_requests"] == 3
    assert snap["server_errors"] == 1
    assert snap["by_status"] == {"200": 2, "500": 1}
    assert snap["counters"] == {"orders.created": 3}
    assert [r["request_id"] for r in snap["slow_requests"]] == ["req-1"]
    assert {(r["method"], r["path"]) for r in snap["routes"]} == {("GET", "/api/products"), ("POST", "/api/orders")}


# --- Logging ---

def test_json_formatter_includes_extras():
    record = logging.LogRecord("marketplace.orders", logging.INFO, __file__, 10, "Order %s placed",
                               ("o1",), None)
    record.order_id = "o1"
    record.user_id = "u1"
    line = json.loads(JSONFormatter("marketplace").format(record))
    assert line["service"] == "marketplace"
    assert line["message"] == "Order o1 placed"
    assert line["level"] == "INFO"
    assert line["order_id"] == "o1"
    assert line["user_id"] == "u1"
    assert "exception" not in line


def test_json_formatter_renders_exceptions():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("marketplace", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
    line = json.loads(JSONFormatter("marketplace").format(record))
    assert "RuntimeError: boom" in line["exception"]


# --- Websocket sender ---

def test_stop_sender_logs_failed_send(caplog):
    async def scenario():
        async def failing_send():
            raise RuntimeError("socket gone")

        sender = asyncio.create_task(failing_send())
        await asyncio.sleep(0)
        await stop_sender(sender, "u1")

    with caplog.at_level(logging.WARNING, logger="marketplace.realtime"):
        run(scenario())
    assert "Websocket sender failed" in caplog.text


def test_stop_sender_cancels_running_task():
    async def scenario():
        sender = asyncio.create_task(asyncio.sleep(60))
        await stop_sender(sender, "u1")
        return sender

    assert run(scenario()).cancelled()
