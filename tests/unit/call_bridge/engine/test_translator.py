from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

from pydantic import BaseModel

from call_bridge.app.engine.translator import EventTranslator
from call_bridge.app.engine.types import CallSession, SessionDefaults, SessionOverrides, SessionState
from call_bridge.app.tools.builtin import BuiltinTools
from call_bridge.app.tools.callbacks import CallbackScheduler
from call_bridge.app.tools.dispatcher import ToolDispatcher, ToolSpec


def run(coro):
    return asyncio.run(coro)


class _Outbox:
    def __init__(self) -> None:
        self.events: list[dict[str, object]] = []

    async def __call__(self, event: dict[str, object]) -> None:
        self.events.append(event)


class _ClosedLink:
    closed = True


def _fixed_now(tz):  # noqa: ANN001
    return datetime(2024, 3, 1, 15, 30, tzinfo=timezone.utc).astimezone(tz)


def _translator(*, tools_enabled: bool = True, verbose: bool = False) -> EventTranslator:
    tools = BuiltinTools(scheduler=CallbackScheduler(), now=_fixed_now)
    return EventTranslator(
        defaults=SessionDefaults(instructions="Be brief.", tools_enabled=tools_enabled),
        dispatcher=ToolDispatcher(tools.specs()),
        verbose=verbose,
    )


def _active_session() -> CallSession:
    session = CallSession(call_id="CA1", metadata={"from": "+15551234567"})
    session.transition(SessionState.CONNECTING)
    session.transition(SessionState.ACTIVE)
    return session


def test_session_update_carries_full_configuration() -> None:
    translator = _translator()
    session = CallSession(call_id="CA1")

    event = translator.build_session_update(session)

    config = event["session"]
    assert event["type"] == "session.update"
    assert config["modalities"] == ["text", "audio"]
    assert config["instructions"] == "Be brief."
    assert config["voice"] == "alloy"
    assert config["input_audio_format"] == "pcm16"
    assert config["output_audio_format"] == "pcm16"
    assert config["input_audio_transcription"] == {"model": "whisper-1"}
    assert config["turn_detection"] == {
        "type": "server_vad",
        "threshold": 0.5,
        "prefix_padding_ms": 300,
        "silence_duration_ms": 200,
    }
    assert [tool["name"] for tool in config["tools"]] == [
        "get_current_time",
        "schedule_callback",
        "transfer_to_human",
    ]
    assert config["tool_choice"] == "auto"
    assert config["temperature"] == 0.8
    assert config["max_response_output_tokens"] == 4096


def test_session_update_applies_overrides_and_disables_tools() -> None:
    translator = _translator(tools_enabled=False)
    session = CallSession(call_id="CA1", overrides=SessionOverrides(instructions="Custom.", voice="verse"))

    config = translator.build_session_update(session)["session"]

    assert config["instructions"] == "Custom."
    assert config["voice"] == "verse"
    assert config["tools"] == []


def test_schedule_callback_schema_lists_required_fields() -> None:
    config = _translator().build_session_update(CallSession(call_id="CA1"))["session"]
    schema = next(tool for tool in config["tools"] if tool["name"] == "schedule_callback")

    assert schema["type"] == "function"
    assert set(schema["parameters"]["required"]) == {"phone_number", "preferred_time"}


def test_session_created_records_remote_id_and_activates() -> None:
    session = CallSession(call_id="CA1")
    session.transition(SessionState.CONNECTING)
    outbox = _Outbox()

    keep_going = run(_translator().handle(session, {"type": "session.created", "session": {"id": "sess_1"}}, outbox))

    assert keep_going is True
    assert session.state is SessionState.ACTIVE
    assert session.openai_session_id == "sess_1"
    assert session.last_activity is not None
    assert outbox.events == []


def test_get_current_time_round_trip_with_empty_arguments() -> None:
    session = _active_session()
    outbox = _Outbox()
    event = {
        "type": "response.function_call_arguments.done",
        "name": "get_current_time",
        "call_id": "call_42",
        "arguments": "",
    }

    keep_going = run(_translator().handle(session, event, outbox))

    assert keep_going is True
    assert len(outbox.events) == 1
    sent = outbox.events[0]
    assert sent["type"] == "conversation.item.create"
    assert sent["item"]["type"] == "function_call_output"
    assert sent["item"]["call_id"] == "call_42"
    payload = json.loads(sent["item"]["output"])
    assert payload["current_time"] == "Friday, March 01, 2024 03:30 PM"
    assert payload["timezone"] == "UTC"
    assert session.pending_tool_calls == set()
    assert session.event_log[-1].event_type == "conversation.item.create"
    assert session.event_log[-1].direction == "OUT"


def test_unknown_tool_returns_error_payload_and_stays_active() -> None:
    session = _active_session()
    outbox = _Outbox()
    event = {
        "type": "response.function_call_arguments.done",
        "name": "launch_rockets",
        "call_id": "call_1",
        "arguments": "{}",
    }

    keep_going = run(_translator().handle(session, event, outbox))

    assert keep_going is True
    assert session.state is SessionState.ACTIVE
    payload = json.loads(outbox.events[0]["item"]["output"])
    assert payload == {"error": "unknown function", "function": "launch_rockets"}


def test_invalid_tool_arguments_are_reported_to_model() -> None:
    session = _active_session()
    outbox = _Outbox()
    event = {
        "type": "response.function_call_arguments.done",
        "name": "schedule_callback",
        "call_id": "call_2",
        "arguments": "{not json",
    }

    assert run(_translator().handle(session, event, outbox)) is True

    payload = json.loads(outbox.events[0]["item"]["output"])
    assert payload["function"] == "schedule_callback"
    assert payload["error"].startswith("invalid JSON arguments")
    assert session.state is SessionState.ACTIVE


def test_function_call_without_call_id_is_skipped() -> None:
    session = _active_session()
    outbox = _Outbox()

    keep_going = run(
        _translator().handle(
            session,
            {"type": "response.function_call_arguments.done", "name": "get_current_time"},
            outbox,
        )
    )

    assert keep_going is True
    assert outbox.events == []
    assert session.state is SessionState.ACTIVE


def test_tool_result_is_discarded_when_link_closed() -> None:
    session = _active_session()
    session.link = _ClosedLink()  # type: ignore[assignment]
    outbox = _Outbox()
    event = {
        "type": "response.function_call_arguments.done",
        "name": "get_current_time",
        "call_id": "call_3",
        "arguments": "{}",
    }

    assert run(_translator().handle(session, event, outbox)) is False
    assert outbox.events == []


def test_transfer_tool_sends_ack_then_stops_session() -> None:
    session = _active_session()
    outbox = _Outbox()
    event = {
        "type": "response.function_call_arguments.done",
        "name": "transfer_to_human",
        "call_id": "call_4",
        "arguments": json.dumps({"reason": "billing dispute", "urgency": "high"}),
    }

    keep_going = run(_translator().handle(session, event, outbox))

    assert keep_going is False
    assert session.end_reason == "transferred_to_human"
    payload = json.loads(outbox.events[0]["item"]["output"])
    assert payload["success"] is True
    assert payload["urgency"] == "high"


def test_response_done_accumulates_usage() -> None:
    session = _active_session()
    translator = _translator()
    done = {
        "type": "response.done",
        "response": {"usage": {"total_tokens": 30, "input_tokens": 10, "output_tokens": 20}},
    }

    run(translator.handle(session, done, _Outbox()))
    run(translator.handle(session, done, _Outbox()))
    run(translator.handle(session, {"type": "response.done", "response": {}}, _Outbox()))

    assert session.usage == {"total_tokens": 60, "input_tokens": 20, "output_tokens": 40, "responses": 3}


def test_error_event_records_error_and_moves_to_erroring() -> None:
    session = _active_session()

    keep_going = run(
        _translator().handle(
            session,
            {"type": "error", "error": {"type": "invalid_request_error", "message": "bad audio"}},
            _Outbox(),
        )
    )

    assert keep_going is False
    assert session.state is SessionState.ERRORING
    assert session.last_error == "bad audio"


def test_unrecognized_events_change_nothing() -> None:
    session = _active_session()

    keep_going = run(_translator(verbose=True).handle(session, {"type": "rate_limits.updated"}, _Outbox()))

    assert keep_going is True
    assert session.state is SessionState.ACTIVE
    assert [entry.event_type for entry in session.event_log] == ["rate_limits.updated"]


def test_events_are_applied_in_arrival_order() -> None:
    session = _active_session()
    translator = _translator()

    run(translator.handle(session, {"type": "conversation.item.created"}, _Outbox()))
    first_activity = session.last_activity
    run(translator.handle(session, {"type": "response.done", "response": {}}, _Outbox()))

    assert [entry.event_type for entry in session.event_log] == ["conversation.item.created", "response.done"]
    assert session.event_log[0].timestamp <= session.event_log[1].timestamp
    assert first_activity is not None
    assert session.last_activity >= first_activity


def test_custom_dispatcher_receives_call_context() -> None:
    seen: list[tuple[str, str, dict[str, object]]] = []

    class _EchoArgs(BaseModel):
        text: str

    async def echo(arguments: _EchoArgs, context) -> dict[str, str]:  # noqa: ANN001
        seen.append((context.call_id, context.tool_call_id, dict(context.metadata)))
        return {"echo": arguments.text}

    translator = EventTranslator(
        defaults=SessionDefaults(instructions="x", tools_enabled=True),
        dispatcher=ToolDispatcher([ToolSpec("echo", "Echo text", _EchoArgs, echo)]),
    )
    session = _active_session()
    outbox = _Outbox()

    run(
        translator.handle(
            session,
            {
                "type": "response.function_call_arguments.done",
                "name": "echo",
                "call_id": "call_5",
                "arguments": '{"text": "hi"}',
            },
            outbox,
        )
    )

    assert seen == [("CA1", "call_5", {"from": "+15551234567"})]
    assert json.loads(outbox.events[0]["item"]["output"]) == {"echo": "hi"}
