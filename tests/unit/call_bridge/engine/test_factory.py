from __future__ import annotations

from call_bridge.app.config import Settings
from call_bridge.app.engine.factory import build_session_defaults, create_session_controller, create_twilio_client
from call_bridge.app.engine.session_controller import SessionController
from call_bridge.app.engine.types import CallSession
from call_bridge.app.twilio.client import TwilioClient


def _settings(**overrides) -> Settings:  # noqa: ANN003
    values = {
        "OPENAI_API_KEY": "sk-test",
        "OPENAI_REALTIME_MODEL": "gpt-4o-realtime-preview",
        "ENABLE_FUNCTION_CALLING": True,
        "MAX_CONCURRENT_CALLS": 3,
        "TWILIO_ACCOUNT_SID": "",
        "TWILIO_AUTH_TOKEN": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def test_create_session_controller_wires_settings() -> None:
    config = _settings(OPENAI_PROJECT="proj_1", HUMAN_AGENT_NUMBER="+15550009999")

    controller = create_session_controller(config)

    assert isinstance(controller, SessionController)
    assert controller._endpoint == "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview"
    assert controller._headers == {
        "Authorization": "Bearer sk-test",
        "OpenAI-Beta": "realtime=v1",
        "OpenAI-Project": "proj_1",
    }
    assert controller._retry_schedule == (0.0, 2.0, 5.0, 10.0, 15.0)
    assert controller._human_agent_number == "+15550009999"
    assert controller.registry.max_sessions == 3


def test_session_update_offers_builtin_tools_when_enabled() -> None:
    controller = create_session_controller(_settings())

    update = controller._translator.build_session_update(CallSession(call_id="CA1"))

    assert [tool["name"] for tool in update["session"]["tools"]] == [
        "get_current_time",
        "schedule_callback",
        "transfer_to_human",
    ]


def test_build_session_defaults_maps_voice_format_and_instructions() -> None:
    defaults = build_session_defaults(
        _settings(OPENAI_REALTIME_VOICE="verse", AUDIO_FORMAT="g711_ulaw", DEFAULT_INSTRUCTIONS="Hi.")
    )

    assert defaults.voice == "verse"
    assert defaults.audio_format == "g711_ulaw"
    assert defaults.instructions == "Hi."
    assert defaults.tools_enabled is True


def test_create_twilio_client_requires_credentials() -> None:
    assert create_twilio_client(_settings()) is None
    assert isinstance(create_twilio_client(_settings(TWILIO_ACCOUNT_SID="AC1", TWILIO_AUTH_TOKEN="t")), TwilioClient)
