"""Runtime configuration for the call bridge service."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for call bridge runtime behavior.

    Values are loaded from environment variables, with `.env` used for local
    development defaults.

    Attributes:
        PUBLIC_HOST: Public hostname used when constructing callback URLs.
        PUBLIC_PROTOCOL: URL scheme (`http` or `https`) for public endpoints.
        PORT: Local port where the bridge listens.
        PUBLIC_BASE_URL: Optional explicit public base URL override.
        OPENAI_API_KEY: API key for realtime model access.
        OPENAI_ORGANIZATION: Optional organization header value.
        OPENAI_PROJECT: Optional project header value.
        OPENAI_REALTIME_MODEL: Realtime model identifier.
        OPENAI_REALTIME_VOICE: Default voice used for synthesized model audio.
        AUDIO_FORMAT: Audio encoding used for both input and output audio.
        DEFAULT_INSTRUCTIONS: System instructions sent when a call has no
            per-call override.
        ENABLE_FUNCTION_CALLING: Whether tool schemas are offered to the model.
        ENABLE_HUMAN_TRANSFER: Whether the transfer API endpoint is enabled.
        HUMAN_AGENT_NUMBER: Optional number dialed when the model asks for a
            human transfer.
        MAX_CONCURRENT_CALLS: Upper bound on live sessions.
        CONNECT_RETRY_SCHEDULE_S: Delays applied before each realtime connect
            attempt.
        CONNECT_TIMEOUT_S: Handshake timeout for one connect attempt.
        TOOL_TIMEZONE: IANA timezone reported by the time lookup tool.
        CALLBACK_WEBHOOK_URL: Optional endpoint that receives scheduled
            callbacks.
        TWILIO_ACCOUNT_SID: Twilio account used for REST call control.
        TWILIO_AUTH_TOKEN: Auth token for REST calls and signature checks.
        TWILIO_PHONE_NUMBER: Caller ID used for outbound calls.
        ENABLE_OUTBOUND_CALLS: Whether the outbound call API endpoint is enabled.
        ENABLE_CALL_RECORDING: Whether outbound calls are recorded by Twilio.
        VALIDATE_TWILIO_SIGNATURES: Whether to enforce Twilio signature checks.
        MEDIA_STREAM_URL: Optional media stream URL placed in inbound TwiML.
        LOG_LEVEL: Application log verbosity.
        WEBSOCKETS_LOG_LEVEL: Log level for `websockets` library internals.
        VERBOSE_OPENAI_RAW_EVENTS: Logs unrecognized realtime events.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    PUBLIC_HOST: str = "localhost"
    PUBLIC_PROTOCOL: str = "http"
    PORT: int = Field(default=3000, ge=1, le=65535)
    PUBLIC_BASE_URL: str | None = None
    OPENAI_API_KEY: str = ""
    OPENAI_ORGANIZATION: str | None = None
    OPENAI_PROJECT: str | None = None
    OPENAI_REALTIME_MODEL: str = "gpt-4o-realtime-preview"
    OPENAI_REALTIME_VOICE: str = "alloy"
    AUDIO_FORMAT: str = "pcm16"
    DEFAULT_INSTRUCTIONS: str = "You are a helpful AI assistant. Speak clearly and be concise."
    ENABLE_FUNCTION_CALLING: bool = False
    ENABLE_HUMAN_TRANSFER: bool = False
    HUMAN_AGENT_NUMBER: str | None = None
    MAX_CONCURRENT_CALLS: int = Field(default=50, ge=1)
    CONNECT_RETRY_SCHEDULE_S: tuple[float, ...] = (0.0, 2.0, 5.0, 10.0, 15.0)
    CONNECT_TIMEOUT_S: float = Field(default=10.0, gt=0)
    TOOL_TIMEZONE: str = "UTC"
    CALLBACK_WEBHOOK_URL: str | None = None
    TWILIO_ACCOUNT_SID: str = ""
    TWILIO_AUTH_TOKEN: str = ""
    TWILIO_PHONE_NUMBER: str | None = None
    ENABLE_OUTBOUND_CALLS: bool = False
    ENABLE_CALL_RECORDING: bool = False
    MEDIA_STREAM_URL: str | None = None
    LOG_LEVEL: str = "info"
    WEBSOCKETS_LOG_LEVEL: str = "info"
    VERBOSE_OPENAI_RAW_EVENTS: bool = False

    # Twilio webhook validation. Keep enabled in production.
    VALIDATE_TWILIO_SIGNATURES: bool = True

    @property
    def public_base_url(self) -> str:
        """Builds the public HTTP base URL used for webhook callbacks."""
        return self.PUBLIC_BASE_URL or f"{self.PUBLIC_PROTOCOL}://{self.PUBLIC_HOST}:{self.PORT}"

    @property
    def realtime_endpoint(self) -> str:
        """Returns the realtime websocket URL for the configured model."""
        return f"wss://api.openai.com/v1/realtime?model={self.OPENAI_REALTIME_MODEL}"

    @property
    def realtime_headers(self) -> dict[str, str]:
        """Builds the handshake headers for the realtime websocket.

        Returns:
            Authorization, beta opt-in and optional org/project headers.
        """
        headers = {
            "Authorization": f"Bearer {self.OPENAI_API_KEY}",
            "OpenAI-Beta": "realtime=v1",
        }
        if self.OPENAI_ORGANIZATION:
            headers["OpenAI-Organization"] = self.OPENAI_ORGANIZATION
        if self.OPENAI_PROJECT:
            headers["OpenAI-Project"] = self.OPENAI_PROJECT
        return headers

    @property
    def media_stream_url(self) -> str:
        """Returns the stream URL placed in `<Connect><Stream>` TwiML."""
        return self.MEDIA_STREAM_URL or self.realtime_endpoint


settings = Settings()
