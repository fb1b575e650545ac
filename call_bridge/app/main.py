"""FastAPI entrypoint for Twilio webhooks and the call-management API.

This module performs five primary responsibilities:
1. Validate Twilio webhook signatures.
2. Translate Twilio call-status webhooks into session lifecycle operations.
3. Expose the call-management API (list, inspect, originate, end, transfer,
   statistics).
4. Serve liveness, readiness and detailed health checks.
5. Manage process-lifecycle resources such as the session controller.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from collections.abc import Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import APIRouter, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from shared import schemas

from .config import settings
from .engine.factory import create_session_controller, create_twilio_client
from .engine.session_controller import SessionController
from .engine.types import SessionOverrides
from .errors import SessionAlreadyExists, SessionCapacityExceeded, SessionNotFound, TelephonyError
from .observability.call_log import log_call_event
from .tools.callbacks import CallbackScheduler
from .twilio import twiml
from .twilio.client import TwilioClient, summarize_calls

_LOGGER = logging.getLogger(__name__)

_TERMINAL_CALL_STATUSES = frozenset({"completed", "failed", "busy", "no-answer", "canceled"})
_ANSWER_CALL_STATUSES = frozenset({"ringing", "in-progress"})


def _configure_logging() -> None:
    """Configures runtime log levels for bridge lifecycle tracing."""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    websockets_level = getattr(
        logging,
        settings.WEBSOCKETS_LOG_LEVEL.upper(),
        logging.INFO,
    )
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(
            level=level,
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )
    else:
        root_logger.setLevel(level)

    _LOGGER.setLevel(level)
    logging.getLogger("call_bridge").setLevel(level)
    logging.getLogger("websockets").setLevel(websockets_level)
    logging.getLogger("websockets.client").setLevel(websockets_level)
    _LOGGER.debug(
        "Logging configured for call bridge.",
        extra={
            "log_level": settings.LOG_LEVEL,
            "websockets_log_level": settings.WEBSOCKETS_LOG_LEVEL,
            "validate_twilio_signatures": settings.VALIDATE_TWILIO_SIGNATURES,
        },
    )


def _compute_twilio_signature(
    auth_token: str,
    url: str,
    params: Iterable[tuple[str, str]],
) -> str:
    """Computes the Twilio HMAC-SHA1 signature for a request.

    Args:
        auth_token: Twilio account auth token used as HMAC key.
        url: URL Twilio used when it generated the signature.
        params: Request parameters that participate in signing.

    Returns:
        Base64-encoded HMAC-SHA1 signature.
    """
    # Twilio signs parameters sorted by key.
    sorted_pairs = sorted(params, key=lambda pair: pair[0])
    payload = url + "".join(f"{key}{value}" for key, value in sorted_pairs)
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("utf-8")


def _build_candidate_urls(observed_url: str, configured_base_url: str, path: str, query: str) -> list[str]:
    """Builds URL variants for signature checks behind rewriting proxies."""
    candidates = [observed_url]
    configured_url = f"{configured_base_url.rstrip('/')}{path}"
    if query:
        configured_url = f"{configured_url}?{query}"
    if configured_url not in candidates:
        candidates.append(configured_url)
    return candidates


def _is_twilio_signature_valid(
    signature: str,
    auth_token: str,
    candidate_urls: Iterable[str],
    params: Iterable[tuple[str, str]],
) -> bool:
    """Checks whether a provided signature matches any candidate URL.

    Returns:
        True when a candidate URL produces the same signature.
    """
    if not signature:
        return False
    params_list = list(params)
    for url in candidate_urls:
        expected = _compute_twilio_signature(auth_token, url, params_list)
        if hmac.compare_digest(signature, expected):
            _LOGGER.debug("Twilio signature matched candidate URL.", extra={"url": url})
            return True
    _LOGGER.debug("Twilio signature did not match any candidate URL.")
    return False


async def _validate_twilio_http_request(request: Request) -> bool:
    """Validates `X-Twilio-Signature` for inbound HTTP webhooks.

    Returns:
        True when signature verification succeeds or validation is disabled.
    """
    if not settings.VALIDATE_TWILIO_SIGNATURES:
        return True
    if not settings.TWILIO_AUTH_TOKEN:
        _LOGGER.error("Twilio signature validation is enabled but TWILIO_AUTH_TOKEN is empty.")
        return False

    signature = request.headers.get("X-Twilio-Signature", "")
    params: list[tuple[str, str]] = list(request.query_params.multi_items())
    if request.method.upper() == "POST":
        # For form posts, Twilio signs form fields (not query params).
        form = await request.form()
        params = [(key, str(value)) for key, value in form.multi_items()]

    candidate_urls = _build_candidate_urls(
        observed_url=str(request.url),
        configured_base_url=settings.public_base_url,
        path=request.url.path,
        query=request.url.query,
    )
    return _is_twilio_signature_valid(signature, settings.TWILIO_AUTH_TOKEN, candidate_urls, params)


async def _read_twilio_form(request: Request) -> dict[str, str]:
    """Validates the signature and returns the webhook form fields.

    Raises:
        HTTPException: If request signature validation fails.
    """
    if not await _validate_twilio_http_request(request):
        _LOGGER.warning("Twilio webhook rejected due to failed signature validation.", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid Twilio request signature.",
        )
    form = await request.form()
    return {key: str(value) for key, value in form.items()}


def _xml(content: str) -> PlainTextResponse:
    return PlainTextResponse(content=content, media_type="text/xml")


def _controller(request: Request) -> SessionController:
    return request.app.state.controller


def _telephony(request: Request) -> TwilioClient:
    telephony = request.app.state.telephony
    if telephony is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Twilio is not configured")
    return telephony


def _recording_action_url(call_sid: str) -> str:
    return f"{settings.public_base_url.rstrip('/')}/twilio/recording/{call_sid}"


twilio_router = APIRouter(prefix="/twilio")


@twilio_router.post("/inbound")
async def inbound(request: Request) -> PlainTextResponse:
    """Maps Twilio voice webhooks onto the session lifecycle.

    ``ringing`` (and ``in-progress`` for answered outbound calls) accepts the
    call and answers with ``<Connect><Stream>`` TwiML; ``completed`` and
    ``failed`` terminate the session. Unexpected failures answer with an
    apology and hang up.

    Raises:
        HTTPException: If request signature validation fails or the form
            carries no ``CallSid``.
    """
    form = await _read_twilio_form(request)
    call_sid = form.get("CallSid", "")
    if not call_sid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing CallSid.")
    call_status = form.get("CallStatus", "")
    log_call_event(
        call_sid,
        "webhook_received",
        status=call_status,
        direction=form.get("Direction"),
        from_number=form.get("From"),
        to_number=form.get("To"),
    )
    try:
        return await _handle_inbound(_controller(request), call_sid, call_status, form)
    except Exception:
        _LOGGER.exception("Inbound webhook failed.", extra={"call_id": call_sid, "status": call_status})
        return _xml(twiml.build_say_and_hangup_twiml(twiml.ERROR_MESSAGE))


async def _handle_inbound(
    controller: SessionController,
    call_sid: str,
    call_status: str,
    form: dict[str, str],
) -> PlainTextResponse:
    if call_status in _ANSWER_CALL_STATUSES:
        metadata = {
            "from": form.get("From"),
            "to": form.get("To"),
            "direction": form.get("Direction"),
            "caller_name": form.get("CallerName"),
        }
        try:
            await controller.on_call_ringing(call_sid, metadata)
        except SessionAlreadyExists:
            _LOGGER.warning("Duplicate ringing webhook for live call.", extra={"call_id": call_sid})
        except SessionCapacityExceeded as exc:
            _LOGGER.error(
                "Cannot accept call %s: %s",
                call_sid,
                exc,
                extra={"call_id": call_sid, "limit": exc.limit},
            )
            return _xml(
                twiml.build_say_and_record_twiml(
                    twiml.UNAVAILABLE_MESSAGE,
                    action_url=_recording_action_url(call_sid),
                )
            )
        return _xml(
            twiml.build_connect_stream_twiml(
                settings.media_stream_url,
                name=f"openai_stream_{call_sid}",
                parameters={"from": form.get("From"), "to": form.get("To")},
            )
        )

    if call_status == "completed":
        await controller.on_call_completed(call_sid)
    elif call_status == "failed":
        await controller.on_call_failed(call_sid)
    return _xml(twiml.build_empty_twiml())


@twilio_router.post("/status")
async def call_status_callback(request: Request) -> dict[str, bool]:
    """Terminates sessions for calls Twilio reports as finished."""
    form = await _read_twilio_form(request)
    call_sid = form.get("CallSid", "")
    call_status = form.get("CallStatus", "")
    log_call_event(call_sid, "status_callback", status=call_status)
    if call_sid and call_status in _TERMINAL_CALL_STATUSES:
        controller = _controller(request)
        if call_status == "completed":
            await controller.on_call_completed(call_sid)
        else:
            await controller.on_call_failed(call_sid)
    return {"received": True}


@twilio_router.post("/fallback")
async def fallback(request: Request) -> PlainTextResponse:
    """Voicemail TwiML used when the primary voice webhook fails."""
    form = await _read_twilio_form(request)
    call_sid = form.get("CallSid", "")
    log_call_event(call_sid, "fallback_triggered")
    return _xml(twiml.build_say_and_record_twiml(twiml.FALLBACK_MESSAGE, action_url=_recording_action_url(call_sid)))


@twilio_router.post("/recording/{call_sid}")
async def recording(call_sid: str, request: Request) -> PlainTextResponse:
    """Acknowledges a voicemail recording and hangs up."""
    form = await _read_twilio_form(request)
    log_call_event(
        call_sid,
        "recording_received",
        recording_url=form.get("RecordingUrl"),
        duration=form.get("RecordingDuration"),
    )
    return _xml(twiml.build_say_and_hangup_twiml(twiml.RECORDING_THANKS_MESSAGE))


calls_router = APIRouter(prefix="/api/calls")


@calls_router.get("/active", response_model=schemas.ActiveCallsResponse)
async def list_active_calls(request: Request) -> schemas.ActiveCallsResponse:
    snapshots = _controller(request).list_sessions()
    return schemas.ActiveCallsResponse(
        success=True,
        count=len(snapshots),
        calls=[snapshot.to_dict() for snapshot in snapshots],
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@calls_router.post(
    "/outbound",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.OutboundCallResponse,
)
async def create_outbound_call(
    body: schemas.OutboundCallRequest,
    request: Request,
) -> schemas.OutboundCallResponse:
    """Places an outbound call whose session uses the requested overrides.

    The per-call instructions and voice are parked on the controller under
    the new CallSid and applied when Twilio reports the call answered.

    Raises:
        HTTPException: 403 when outbound calls are disabled, 429 at the
            concurrent-call limit, 503 without Twilio credentials, 400 when
            Twilio rejects the number, 502 for other Twilio failures.
    """
    if not settings.ENABLE_OUTBOUND_CALLS:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Outbound calls are not enabled")
    controller = _controller(request)
    if controller.at_capacity():
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Maximum concurrent calls reached ({controller.active_count} active)",
        )
    telephony = _telephony(request)
    base_url = settings.public_base_url.rstrip("/")
    _LOGGER.info(
        "Initiating outbound call.",
        extra={"to": body.to, "instructions": "custom" if body.instructions else "default", "voice": body.voice},
    )
    try:
        call = await telephony.originate_call(
            body.to,
            answer_url=f"{base_url}/twilio/inbound",
            status_callback_url=f"{base_url}/twilio/status",
            record=settings.ENABLE_CALL_RECORDING,
        )
    except TelephonyError as exc:
        status_code = status.HTTP_400_BAD_REQUEST if exc.status_code == 400 else status.HTTP_502_BAD_GATEWAY
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc

    call_sid = str(call["sid"])
    controller.expect_call(
        call_sid,
        {**body.metadata, "direction": "outbound", "to": body.to},
        SessionOverrides(instructions=body.instructions, voice=body.voice),
    )
    log_call_event(call_sid, "outbound_call_initiated", to=body.to, status=call.get("status"))
    return schemas.OutboundCallResponse(success=True, call=call, message="Outbound call initiated successfully")


@calls_router.get("/stats/summary", response_model=schemas.CallStatsResponse)
async def call_stats(
    request: Request,
    started_after: datetime | None = Query(default=None, alias="from"),
    started_before: datetime | None = Query(default=None, alias="to"),
) -> schemas.CallStatsResponse:
    """Summarizes Twilio call records for the account, optionally by start time."""
    telephony = _telephony(request)
    try:
        calls = await telephony.list_calls(started_after=started_after, started_before=started_before)
    except TelephonyError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return schemas.CallStatsResponse(
        success=True,
        stats=summarize_calls(calls),
        active_calls=_controller(request).active_count,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@calls_router.get("/{call_id}", response_model=schemas.CallResponse)
async def get_call(call_id: str, request: Request) -> schemas.CallResponse:
    """Returns the session snapshot plus Twilio call details when available.

    Raises:
        HTTPException: 404 when no live session exists for ``call_id``.
    """
    try:
        snapshot = _controller(request).describe(call_id)
    except SessionNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found") from exc

    call: dict[str, object] = {"session": snapshot.to_dict(), "twilio": None}
    telephony = request.app.state.telephony
    if telephony is not None:
        try:
            call["twilio"] = await telephony.get_call(call_id)
        except TelephonyError as exc:
            _LOGGER.warning(
                "Twilio call lookup failed.",
                extra={"call_id": call_id, "status_code": exc.status_code, "error_message": str(exc)},
            )
    return schemas.CallResponse(success=True, call=call)


@calls_router.delete("/{call_id}", response_model=schemas.ActionResponse)
async def end_call(call_id: str, request: Request) -> schemas.ActionResponse:
    """Hangs up the call and terminates its session.

    Raises:
        HTTPException: 404 for unknown calls, 502 when Twilio rejects the hang-up.
    """
    log_call_event(call_id, "ending_call_requested")
    try:
        await _controller(request).end_session(call_id)
    except SessionNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found") from exc
    except TelephonyError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return schemas.ActionResponse(success=True, message="Call ended successfully")


@calls_router.post("/{call_id}/transfer", response_model=schemas.ActionResponse)
async def transfer_call(
    call_id: str,
    body: schemas.TransferCallRequest,
    request: Request,
) -> schemas.ActionResponse:
    """Transfers the call to another number and terminates its session.

    Raises:
        HTTPException: 403 when transfers are disabled, 404 for unknown calls,
            502 when Twilio rejects the transfer.
    """
    if not settings.ENABLE_HUMAN_TRANSFER:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Human transfer is not enabled")
    log_call_event(call_id, "transfer_requested", to=body.to, reason=body.reason)
    try:
        await _controller(request).transfer_session(call_id, body.to)
    except SessionNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Call not found") from exc
    except TelephonyError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return schemas.ActionResponse(success=True, message="Call transferred successfully")


health_router = APIRouter(prefix="/health")


def _service_status(configured: object) -> str:
    return "configured" if configured else "not_configured"


@health_router.get("")
async def health(request: Request) -> dict[str, object]:
    """Returns a minimal liveness response with the live call count."""
    return {
        "status": "ok",
        "service": "call_bridge",
        "active_calls": _controller(request).active_count,
    }


@health_router.get("/live")
async def live(request: Request) -> dict[str, object]:
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_s": round(time.monotonic() - request.app.state.started_at, 3),
    }


@health_router.get("/ready")
async def ready() -> JSONResponse:
    """Reports readiness once OpenAI and Twilio credentials are configured."""
    timestamp = datetime.now(timezone.utc).isoformat()
    if settings.OPENAI_API_KEY and settings.TWILIO_ACCOUNT_SID:
        return JSONResponse({"status": "ready", "timestamp": timestamp})
    return JSONResponse(
        {"status": "not_ready", "timestamp": timestamp, "message": "Required services not configured"},
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
    )


@health_router.get("/detailed")
async def detailed(request: Request) -> dict[str, object]:
    """Reports configuration state per backing service plus call load.

    ``status`` is ``warning`` while any service is unconfigured.
    """
    services = {
        "openai": _service_status(settings.OPENAI_API_KEY),
        "twilio": _service_status(settings.TWILIO_ACCOUNT_SID and settings.TWILIO_AUTH_TOKEN),
        "callbacks": _service_status(settings.CALLBACK_WEBHOOK_URL),
    }
    controller = _controller(request)
    return {
        "status": "warning" if "not_configured" in (services["openai"], services["twilio"]) else "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime_s": round(time.monotonic() - request.app.state.started_at, 3),
        "services": services,
        "active_calls": controller.active_count,
        "max_concurrent_calls": settings.MAX_CONCURRENT_CALLS,
        "features": {
            "function_calling": settings.ENABLE_FUNCTION_CALLING,
            "human_transfer": settings.ENABLE_HUMAN_TRANSFER,
            "outbound_calls": settings.ENABLE_OUTBOUND_CALLS,
            "call_recording": settings.ENABLE_CALL_RECORDING,
        },
    }


def create_app(controller: SessionController | None = None, *, telephony: TwilioClient | None = None) -> FastAPI:
    """Builds the FastAPI application.

    Args:
        controller: Pre-built controller (tests). When omitted the lifespan
            builds one from settings and shuts it down on exit.
        telephony: Twilio client used for call lookups alongside ``controller``.
    """

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        if controller is not None:
            yield
            return

        _LOGGER.debug("Call bridge lifespan startup beginning.")
        scheduler = CallbackScheduler(settings.CALLBACK_WEBHOOK_URL)
        twilio_client = create_twilio_client(settings)
        app.state.telephony = twilio_client
        app.state.controller = create_session_controller(settings, scheduler=scheduler, telephony=twilio_client)
        try:
            yield
        finally:
            _LOGGER.debug("Call bridge lifespan shutdown beginning.")
            try:
                await app.state.controller.shutdown()
            except Exception:
                _LOGGER.exception("Failed to shut down session controller.")
            await scheduler.close()

    application = FastAPI(lifespan=_lifespan)
    application.state.started_at = time.monotonic()
    if controller is not None:
        application.state.controller = controller
        application.state.telephony = telephony

    application.include_router(health_router)
    application.include_router(twilio_router)
    application.include_router(calls_router)
    return application


_configure_logging()
app = create_app()
