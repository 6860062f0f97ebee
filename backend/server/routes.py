"""
Route registration for the voice surface API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Wire UI sockets to the process VoiceSurface
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect

from observability.logger import log_event, now_ms
from protocol.binary import BinaryProtocolError, check_sequence_gap, decode_c2s_frame
from session.surface import VoiceSurface
from session.ui_channel import UiOutbox


def _surface(app: FastAPI) -> VoiceSurface:
    return app.state.surface


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    @app.get("/health")
    async def health() -> dict[str, str]:  # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/voice/state")
    async def voice_state(request: Request) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        return _surface(request.app).snapshot()

    @app.post("/voice/start")
    async def voice_start(request: Request) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        surface = _surface(request.app)
        await surface.start_conversation()
        return surface.snapshot()

    @app.post("/voice/end")
    async def voice_end(request: Request) -> dict[str, Any]:  # pyright: ignore[reportUnusedFunction]
        surface = _surface(request.app)
        await surface.end_conversation()
        return surface.snapshot()

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket) -> None:  # pyright: ignore[reportUnusedFunction]
        await ws.accept()
        surface = _surface(ws.app)
        outbox = surface.ui.connect()
        sender = asyncio.create_task(_pump_outbox(ws, outbox))

        await ws.send_text(json.dumps({"type": "STATE", **surface.snapshot()}))

        connection = UiConnection(surface)
        try:
            while True:
                msg = await ws.receive()
                if msg.get("type") == "websocket.disconnect":
                    break
                if msg.get("text") is not None:
                    await connection.on_json_message(msg["text"])
                elif msg.get("bytes") is not None:
                    await connection.on_binary_message(msg["bytes"])

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_FATAL_ERROR",
                "level": "error",
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            surface.ui.disconnect(outbox)
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender


class UiConnection:
    """Inbound half of one UI socket: control JSON and mic frames."""

    def __init__(self, surface: VoiceSurface) -> None:
        self._surface = surface
        self._last_seq: int | None = None

    async def on_json_message(self, payload: str) -> None:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "JSON_DECODE_ERROR",
                "level": "warning",
                "error": str(e),
                "payload_preview": payload[:100],
            })
            return

        msg_type = data.get("type") if isinstance(data, dict) else None
        if msg_type == "START_CONVERSATION":
            await self._surface.start_conversation()
        elif msg_type == "END_CONVERSATION":
            await self._surface.end_conversation()
        else:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "UNKNOWN_MESSAGE_TYPE",
                "level": "warning",
                "msg_type": msg_type,
            })

    async def on_binary_message(self, payload: bytes) -> None:
        try:
            frame = decode_c2s_frame(payload, ts_ms=now_ms())
        except BinaryProtocolError as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "BINARY_DECODE_ERROR",
                "level": "warning",
                "error": str(e),
                "payload_len": len(payload),
            })
            return

        gap = check_sequence_gap(last_seq=self._last_seq, current_seq=frame.sequence_num)
        if gap.gap:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "SEQ_GAP_DETECTED",
                "level": "debug",
                "expected": gap.expected,
                "actual": gap.actual,
                "gap_size": gap.gap_size,
            })
        self._last_seq = frame.sequence_num

        await self._surface.push_mic_frame(frame)


async def _pump_outbox(ws: WebSocket, outbox: UiOutbox) -> None:
    while True:
        item = await outbox.get()
        if item is None:
            return
        if isinstance(item, bytes):
            await ws.send_bytes(item)
        else:
            await ws.send_text(json.dumps(item))
