"""
Route registration for the call audio API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Validate request bodies and map errors to status codes
- Wire MediaStreamListener to the vendor WebSocket lifecycle
- Pull shared objects from app.state
"""

from __future__ import annotations

import json
import secrets
import string
import time
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from audio.chunks import Channel
from calls.records import CallRecord, CallRecordStore
from constants import CONVERSATION_ID_HEADER, CONVERSATION_ID_QUERY_PARAMS
from observability.logger import log_event
from session.manager import AudioSessionManager
from session.media_listener import MediaStreamListener
from session.store import DuplicateSessionError, UnknownSessionError


_ID_ALPHABET = string.ascii_lowercase + string.digits


def new_conversation_id() -> str:
    """conv_{epoch ms}_{9 random base36 chars}"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"conv_{time.time_ns() // 1_000_000}_{suffix}"


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    def _manager() -> AudioSessionManager:
        return app.state.session_manager

    def _records() -> CallRecordStore:
        return app.state.call_records

    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    # ------------------------------------------------------------------
    # Call capture lifecycle
    # ------------------------------------------------------------------

    @app.post("/api/calls/start")
    async def start_call(request: Request) -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        body = await _read_json(request)
        if body is None:
            return _error(400, "Invalid JSON body")

        if not body.get("phoneNumber"):
            return _error(400, "phoneNumber is required")

        conversation_id = body.get("conversationId") or new_conversation_id()
        if not isinstance(conversation_id, str):
            return _error(400, "conversationId must be a string")

        manager = _manager()
        try:
            started = manager.start_session(
                conversation_id,
                metadata={
                    "phone_number": body.get("phoneNumber"),
                    "user_id": body.get("userId"),
                },
            )
        except DuplicateSessionError:
            stats = manager.get_session_stats(conversation_id)
            return JSONResponse({
                "conversationId": conversation_id,
                "startTime": stats.started_at_ms if stats else None,
                "alreadyStarted": True,
            })

        return JSONResponse({
            "conversationId": started.conversation_id,
            "startTime": started.started_at_ms,
        })

    @app.put("/api/calls/start")
    async def add_chunk(request: Request) -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        body = await _read_json(request)
        if body is None:
            return _error(400, "Invalid JSON body")

        conversation_id = body.get("conversationId")
        chunk_type = body.get("type")
        base64_data = body.get("base64Data")

        if not conversation_id or not chunk_type or not base64_data:
            return _error(400, "conversationId, type, and base64Data are required")

        if not isinstance(conversation_id, str):
            return _error(400, "conversationId must be a string")

        if chunk_type not in (Channel.INPUT.value, Channel.OUTPUT.value):
            return _error(400, 'Invalid type. Must be "input" or "output"')

        if not isinstance(base64_data, str):
            return _error(400, "base64Data must be a string")

        try:
            accepted = _manager().append_chunk(conversation_id, chunk_type, base64_data)
        except UnknownSessionError:
            return _error(404, "Session not found")

        return JSONResponse({"success": True, "accepted": accepted})

    @app.get("/api/calls/start")
    async def session_stats(conversationId: str | None = None) -> JSONResponse: # pyright: ignore[reportUnusedFunction] # pylint: disable=invalid-name
        if not conversationId:
            return _error(400, "conversationId is required")

        stats = _manager().get_session_stats(conversationId)
        if stats is None:
            return _error(404, "Session not found")
        return JSONResponse(stats.to_json())

    @app.post("/api/calls/end")
    async def end_call(request: Request) -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        body = await _read_json(request)
        if body is None:
            return _error(400, "Invalid JSON body")

        conversation_id = body.get("conversationId")
        if not conversation_id:
            return _error(400, "conversationId is required")

        if not isinstance(conversation_id, str):
            return _error(400, "conversationId must be a string")

        try:
            result = await _manager().end_session(conversation_id, reason="http_end")
        except UnknownSessionError:
            return _error(404, "Session not found")

        duration = body.get("duration")
        if not isinstance(duration, (int, float)) or duration <= 0:
            duration = result.duration_ms // 1000

        risk = body.get("risk")
        record = _records().save(CallRecord(
            conversation_id=conversation_id,
            audio_url=result.audio_url,
            duration_s=int(duration),
            phone_number=body.get("phoneNumber") or "unknown",
            risk=risk if isinstance(risk, (int, float)) else 0,
            status=body.get("status") or "unknown",
        ))

        payload = record.to_json()
        payload["durationMs"] = result.duration_ms
        return JSONResponse(payload)

    # ------------------------------------------------------------------
    # Call history
    # ------------------------------------------------------------------

    @app.get("/api/calls")
    async def list_calls() -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        return JSONResponse([r.to_json() for r in _records().all()])

    @app.get("/api/calls/{conversation_id}")
    async def get_call(conversation_id: str) -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        record = _records().get(conversation_id)
        if record is None:
            return _error(404, "Call not found")
        return JSONResponse(record.to_json())

    @app.put("/api/calls/{conversation_id}/audio")
    async def set_call_audio(conversation_id: str, request: Request) -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        body = await _read_json(request)
        if body is None:
            return _error(400, "Invalid JSON body")

        audio_url = body.get("audioUrl")
        if not audio_url or not isinstance(audio_url, str):
            return _error(400, "audioUrl is required")

        _records().attach_audio_url(conversation_id, audio_url)
        return JSONResponse({
            "success": True,
            "conversationId": conversation_id,
            "audioUrl": audio_url,
        })

    # ------------------------------------------------------------------
    # Vendor media stream
    # ------------------------------------------------------------------

    @app.websocket("/media-stream")
    async def media_stream(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        listener = MediaStreamListener(manager=_manager())
        reason = "vendor_disconnect"

        try:
            await listener.on_connect(_conversation_id_from(ws))

            while True:
                msg = await ws.receive()

                if msg["type"] == "websocket.disconnect":
                    break

                if msg.get("text") is not None:
                    await listener.on_text_message(msg["text"])

                elif msg.get("bytes") is not None:
                    await listener.on_binary_message(msg["bytes"])

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            reason = "server_error"
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "level": "ERROR",
                "connection_id": listener.connection_id,
                "conversation_id": listener.conversation_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            await listener.on_close(reason=reason)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

async def _read_json(request: Request) -> dict[str, Any] | None:
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def _conversation_id_from(ws: WebSocket) -> str | None:
    for name in CONVERSATION_ID_QUERY_PARAMS:
        value = ws.query_params.get(name)
        if value:
            return value
    return ws.headers.get(CONVERSATION_ID_HEADER) or None
