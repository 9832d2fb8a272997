import asyncio
import json

import httpx

from kitchen_logistics import deps, notifications


class RecordingSink:
    def __init__(self, ok=True):
        self.ok = ok
        self.sent = []

    async def send(self, to, subject, html):
        self.sent.append((to, subject, html))
        return self.ok


def test_reject_reason_is_escaped(world):
    notification = notifications.request_rejected(world.branch_id, "REQ-20250107-0001", "<script>x</script>")
    html = notifications.render_email("North", notification.message)

    assert "&lt;script&gt;x&lt;/script&gt;" in html
    assert "<b>REQ-20250107-0001</b>" in html
    assert "<script>" not in html


def test_deliver_reaches_active_branch_admins(world):
    sink = RecordingSink()
    dispatcher = notifications.NotificationDispatcher(sink, deps.SessionLocal)

    sent = asyncio.run(dispatcher.deliver(notifications.request_shipped(world.branch_id, "REQ-20250107-0001")))

    assert sent == 1
    to, subject, html = sink.sent[0]
    assert to == "north@example.test"
    assert subject == "[Dapur MBG] Request shipped"
    assert "Hello North," in html


def test_failed_sends_are_not_counted(world):
    sink = RecordingSink(ok=False)
    dispatcher = notifications.NotificationDispatcher(sink, deps.SessionLocal)

    sent = asyncio.run(dispatcher.deliver(notifications.request_approved(world.branch_id, "REQ-20250107-0001")))

    assert sent == 0
    assert len(sink.sent) == 1


def test_worker_drains_queue_and_survives_errors(world):
    class FlakySink(RecordingSink):
        async def send(self, to, subject, html):
            if not self.sent:
                self.sent.append(None)
                raise RuntimeError("relay down")
            return await super().send(to, subject, html)

    sink = FlakySink()

    async def scenario():
        dispatcher = notifications.NotificationDispatcher(sink, deps.SessionLocal)
        await dispatcher.start()
        dispatcher.publish(notifications.request_approved(world.branch_id, "REQ-20250107-0001"))
        dispatcher.publish(notifications.request_shipped(world.branch_id, "REQ-20250107-0001"))
        await asyncio.wait_for(dispatcher.queue.join(), timeout=5)
        await dispatcher.stop()

    asyncio.run(scenario())
    assert sink.sent[0] is None
    assert sink.sent[1][1] == "[Dapur MBG] Request shipped"


def test_http_relay_posts_json():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(202)

    async def scenario():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = notifications.HttpRelaySink("http://relay.test/send", client=client)
        try:
            return await sink.send("north@example.test", "Hi", "<p>Hi</p>")
        finally:
            await sink.aclose()

    assert asyncio.run(scenario()) is True
    assert requests == [{"to": "north@example.test", "subject": "Hi", "html": "<p>Hi</p>"}]


def test_http_relay_reports_failures():
    def rejecting(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def send_with(handler):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        sink = notifications.HttpRelaySink("http://relay.test/send", client=client)
        try:
            return await sink.send("north@example.test", "Hi", "<p>Hi</p>")
        finally:
            await sink.aclose()

    assert asyncio.run(send_with(rejecting)) is False
    assert asyncio.run(send_with(unreachable)) is False


def test_build_sink_defaults_to_logging(monkeypatch):
    monkeypatch.setattr(notifications, "NOTIFY_RELAY_URL", "")
    assert isinstance(notifications.build_sink(), notifications.LoggingSink)
