from __future__ import annotations

import asyncio
import json

import pytest
from websockets.datastructures import Headers
from websockets.exceptions import ConnectionClosedError, InvalidStatus
from websockets.frames import Close
from websockets.http11 import Response

import call_bridge.app.engine.providers.openai_realtime_link as link_module
from call_bridge.app.engine.providers.openai_realtime_link import WebSocketRealtimeLink
from call_bridge.app.engine.providers.types import LinkClosed, parse_event
from call_bridge.app.errors import ConnectError, ProtocolError


def run(coro):
    return asyncio.run(coro)


class _FakeConnection:
    def __init__(self, messages: list[str], *, error: Exception | None = None) -> None:
        self._messages = list(messages)
        self._error = error
        self.sent: list[str] = []
        self.close_calls = 0
        self.close_code: int | None = 1000
        self.close_reason = "bye"

    async def send(self, data: str) -> None:
        self.sent.append(data)

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self._messages:
            yield message
        if self._error is not None:
            raise self._error

    async def close(self) -> None:
        self.close_calls += 1


async def _collect(link: WebSocketRealtimeLink) -> list[object]:
    return [message async for message in link.receive()]


def test_parse_event_accepts_typed_object() -> None:
    assert parse_event('{"type": "session.created", "session": {"id": "s"}}')["type"] == "session.created"


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"no_type": true}', '{"type": ""}'])
def test_parse_event_rejects_malformed_messages(raw: str) -> None:
    with pytest.raises(ProtocolError):
        parse_event(raw)


def test_send_serializes_one_json_event() -> None:
    connection = _FakeConnection([])
    link = WebSocketRealtimeLink(connection)  # type: ignore[arg-type]

    run(link.send({"type": "session.update", "session": {"voice": "alloy"}}))

    assert [json.loads(item) for item in connection.sent] == [{"type": "session.update", "session": {"voice": "alloy"}}]


def test_receive_skips_malformed_and_ends_with_clean_close() -> None:
    connection = _FakeConnection(['{"type": "session.created"}', "garbage", '{"type": "response.done"}'])
    link = WebSocketRealtimeLink(connection)  # type: ignore[arg-type]

    messages = run(_collect(link))

    assert messages == [
        {"type": "session.created"},
        {"type": "response.done"},
        LinkClosed(code=1000, reason="bye", clean=True),
    ]
    assert link.closed is True


def test_receive_reports_abnormal_close() -> None:
    error = ConnectionClosedError(Close(1011, "server exploded"), None)
    link = WebSocketRealtimeLink(_FakeConnection(['{"type": "session.created"}'], error=error))  # type: ignore[arg-type]

    messages = run(_collect(link))

    assert messages[-1] == LinkClosed(code=1011, reason="server exploded", clean=False)


def test_close_is_idempotent_and_blocks_sends() -> None:
    connection = _FakeConnection([])
    link = WebSocketRealtimeLink(connection)  # type: ignore[arg-type]

    run(link.close())
    run(link.close())
    run(link.send({"type": "response.create"}))

    assert connection.close_calls == 1
    assert connection.sent == []


def test_connect_maps_handshake_rejection_to_connect_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def rejecting_connect(*args, **kwargs):  # noqa: ANN002, ANN003
        del args, kwargs
        raise InvalidStatus(Response(404, "Not Found", Headers()))

    monkeypatch.setattr(link_module, "connect", rejecting_connect)

    with pytest.raises(ConnectError, match="404"):
        run(WebSocketRealtimeLink.connect("wss://realtime.test", {"Authorization": "Bearer k"}))


def test_connect_maps_network_failure_to_connect_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def failing_connect(*args, **kwargs):  # noqa: ANN002, ANN003
        del args, kwargs
        raise OSError("connection refused")

    monkeypatch.setattr(link_module, "connect", failing_connect)

    with pytest.raises(ConnectError):
        run(WebSocketRealtimeLink.connect("wss://realtime.test", {}))


def test_connect_passes_headers_and_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}
    connection = _FakeConnection([])

    async def fake_connect(endpoint: str, **kwargs):  # noqa: ANN003
        captured["endpoint"] = endpoint
        captured.update(kwargs)
        return connection

    monkeypatch.setattr(link_module, "connect", fake_connect)

    link = run(WebSocketRealtimeLink.connect("wss://realtime.test", {"OpenAI-Beta": "realtime=v1"}, open_timeout=3.0))

    assert isinstance(link, WebSocketRealtimeLink)
    assert captured == {
        "endpoint": "wss://realtime.test",
        "additional_headers": {"OpenAI-Beta": "realtime=v1"},
        "open_timeout": 3.0,
    }
