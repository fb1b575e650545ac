from __future__ import annotations

from call_bridge.app.twilio.twiml import (
    FALLBACK_MESSAGE,
    build_connect_stream_twiml,
    build_empty_twiml,
    build_say_and_hangup_twiml,
    build_say_and_record_twiml,
    build_transfer_twiml,
)


def test_build_connect_stream_twiml_includes_name_and_parameters() -> None:
    twiml = build_connect_stream_twiml(
        "wss://example.test/v1/realtime?model=gpt-4o-realtime-preview",
        name="openai_stream_CA1",
        parameters={"from": "+15550001111", "to": "+15550002222"},
    )

    assert '<Stream url="wss://example.test/v1/realtime?model=gpt-4o-realtime-preview" name="openai_stream_CA1">' in twiml
    assert '<Parameter name="from" value="+15550001111" />' in twiml
    assert '<Parameter name="to" value="+15550002222" />' in twiml


def test_build_connect_stream_twiml_omits_empty_parameters() -> None:
    twiml = build_connect_stream_twiml("wss://example.test/stream", parameters={"from": None, "to": ""})

    assert "<Parameter" not in twiml
    assert " name=" not in twiml


def test_stream_url_is_xml_escaped() -> None:
    twiml = build_connect_stream_twiml("wss://example.test/stream?a=1&b=2")

    assert 'url="wss://example.test/stream?a=1&amp;b=2"' in twiml


def test_say_and_record_twiml_posts_recording_to_action() -> None:
    twiml = build_say_and_record_twiml(FALLBACK_MESSAGE, action_url="https://bridge.test/twilio/recording/CA1")

    assert f"<Say>{FALLBACK_MESSAGE}</Say>" in twiml
    assert '<Record maxLength="120" action="https://bridge.test/twilio/recording/CA1" method="POST" />' in twiml


def test_say_and_hangup_twiml() -> None:
    twiml = build_say_and_hangup_twiml("Thanks & goodbye")

    assert "<Say>Thanks &amp; goodbye</Say>" in twiml
    assert twiml.endswith("<Hangup />\n</Response>")


def test_transfer_twiml_announces_then_dials() -> None:
    twiml = build_transfer_twiml("+15550009999")

    assert twiml.index("<Say>Please hold while we transfer your call.</Say>") < twiml.index("<Dial>+15550009999</Dial>")


def test_empty_twiml() -> None:
    assert build_empty_twiml().endswith("<Response />")
