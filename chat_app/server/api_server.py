"""FastAPI server exposing the WebSocket session protocol and a few read-only routes."""

from __future__ import annotations

from collections.abc import Callable
from contextlib import asynccontextmanager
import logging
from typing import Any
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
import uvicorn

from chat_app.constants.about import APP_ABOUT_TEXT, APP_NAME, APP_VERSION
from chat_app.constants.network_constants import (
    ALLOWED_ORIGINS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    WEBSOCKET_PATH,
)
from chat_app.core.chat_manager import ChatManager
from chat_app.core.errors import NotFound, SessionError
from chat_app.core.models import Dispatch
from chat_app.server.connection_hub import ConnectionHub
from chat_app.server.debate_ticker import DebateTicker
from chat_app.server.payloads import (
    AdvanceSegmentPayload,
    CreateDebatePayload,
    DebateCodePayload,
    DebateTextPayload,
    Envelope,
    JoinDebatePayload,
    RelayPayload,
    ReportPayload,
    RequestMatchPayload,
    RoomPayload,
    SendMessagePayload,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, dict[str, Any]], list[Dispatch]]


def _build_event_handlers(manager: ChatManager) -> dict[str, EventHandler]:
    """Map inbound event names to validated calls on the session store."""

    def request_match(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        payload = RequestMatchPayload.model_validate(data)
        return manager.request_match(connection_id, payload.mode, payload.display_name)

    def leave_queue(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        return manager.leave_queue(connection_id)

    def send_message(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        payload = SendMessagePayload.model_validate(data)
        return manager.send_message(connection_id, payload.room_id, payload.text)

    def join_room(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        payload = RoomPayload.model_validate(data)
        return manager.join_signaling(connection_id, payload.room_id)

    def relay(kind: str) -> EventHandler:
        def handler(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
            payload = RelayPayload.model_validate(data)
            return manager.relay_signal(
                connection_id, kind, payload.room_id, payload.payload, payload.target_id
            )

        return handler

    def advance_segment(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        payload = AdvanceSegmentPayload.model_validate(data)
        return manager.advance_segment(connection_id, payload.room_id, payload.segment)

    def skip(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        payload = RoomPayload.model_validate(data)
        return manager.skip_segment(connection_id, payload.room_id)

    def leave_room(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        payload = RoomPayload.model_validate(data)
        return manager.leave_room(connection_id, payload.room_id)

    def report_peer(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        payload = ReportPayload.model_validate(data)
        return manager.report_peer(connection_id, payload.room_id, payload.reason)

    def create_debate(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        payload = CreateDebatePayload.model_validate(data)
        return manager.create_debate(
            connection_id, payload.segment_count, title=payload.title, display_name=payload.name
        )

    def join_debate(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        payload = JoinDebatePayload.model_validate(data)
        return manager.join_debate(connection_id, payload.code, payload.role, payload.name)

    def start_debate(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        return manager.start_debate(connection_id, DebateCodePayload.model_validate(data).code)

    def debate_skip(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        return manager.skip_debate_segment(connection_id, DebateCodePayload.model_validate(data).code)

    def debate_chat(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        payload = DebateTextPayload.model_validate(data)
        return manager.debate_chat(connection_id, payload.code, payload.text)

    def debate_question(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        payload = DebateTextPayload.model_validate(data)
        return manager.debate_question(connection_id, payload.code, payload.text)

    def debate_qna_next(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        return manager.debate_qna_next(connection_id, DebateCodePayload.model_validate(data).code)

    def leave_debate(connection_id: str, data: dict[str, Any]) -> list[Dispatch]:
        return manager.leave_debate(connection_id, DebateCodePayload.model_validate(data).code)

    return {
        "request-match": request_match,
        "leave-queue": leave_queue,
        "send-message": send_message,
        "join-room": join_room,
        "relay-offer": relay("offer"),
        "relay-answer": relay("answer"),
        "relay-ice": relay("ice"),
        "advance-segment": advance_segment,
        "skip": skip,
        "leave-room": leave_room,
        "report-peer": report_peer,
        "create-debate": create_debate,
        "join-debate": join_debate,
        "start-debate": start_debate,
        "debate-skip": debate_skip,
        "debate-chat": debate_chat,
        "debate-question": debate_question,
        "debate-qna-next": debate_qna_next,
        "leave-debate": leave_debate,
    }


def _get_chat_manager_dependency(chat_manager: ChatManager):
    def dependency() -> ChatManager:
        return chat_manager

    return dependency


def create_api_app(chat_manager: ChatManager, ticker: DebateTicker | None = None) -> FastAPI:
    """Create a FastAPI application wired to the provided session store."""
    hub = ConnectionHub()
    ticker = ticker or DebateTicker(chat_manager.settings.debate_tick_seconds)

    async def deliver_tick(code: str) -> None:
        await hub.deliver(chat_manager.tick_debate(code))

    async def abort_stalled(code: str) -> None:
        await hub.deliver(chat_manager.abort_debate(code, "timer failure"))

    ticker.bind(deliver_tick, on_failure=abort_stalled)
    chat_manager.attach_timer_scheduler(ticker)
    handlers = _build_event_handlers(chat_manager)
    chat_manager_dep = _get_chat_manager_dependency(chat_manager)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await ticker.shutdown()

    app = FastAPI(
        title=f"{APP_NAME} API",
        description=APP_ABOUT_TEXT,
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_origin_regex=r"https://.*\.vercel\.app",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.hub = hub
    app.state.ticker = ticker

    @app.get("/")
    def read_root() -> dict[str, object]:
        return {
            "message": f"{APP_NAME} Server API",
            "version": APP_VERSION,
            "endpoints": {
                "health": "/health",
                "presence": "/api/presence",
                "debates": "/api/debates",
                "socket": f"WebSocket connection on {WEBSOCKET_PATH}",
            },
            "status": "running",
        }

    @app.get("/health")
    def health(manager: ChatManager = Depends(chat_manager_dep)) -> dict[str, object]:
        return manager.health_snapshot()

    @app.get("/api/presence")
    def presence(manager: ChatManager = Depends(chat_manager_dep)) -> dict[str, object]:
        return manager.presence().to_payload()

    @app.get("/api/debates")
    def list_debates(manager: ChatManager = Depends(chat_manager_dep)) -> list[dict[str, object]]:
        return manager.list_live_debates()

    @app.get("/api/debates/{code}")
    def get_debate(code: str, manager: ChatManager = Depends(chat_manager_dep)) -> dict[str, object]:
        try:
            return manager.get_debate_state(code)
        except NotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    async def handle_frame(connection_id: str, raw: str) -> None:
        try:
            envelope = Envelope.model_validate_json(raw)
        except ValidationError as exc:
            await hub.send(connection_id, "error", {"code": "invalid-payload", "event": None, "detail": str(exc)})
            return
        handler = handlers.get(envelope.event)
        if handler is None:
            await hub.send(
                connection_id,
                "error",
                {"code": "unknown-event", "event": envelope.event, "detail": "Unknown event."},
            )
            return
        try:
            dispatches = handler(connection_id, envelope.data)
        except ValidationError as exc:
            logger.warning("Invalid %s payload from %s", envelope.event, connection_id)
            await hub.send(
                connection_id,
                "error",
                {"code": "invalid-payload", "event": envelope.event, "detail": str(exc)},
            )
            return
        except SessionError as exc:
            logger.warning("Rejected %s from %s: %s", envelope.event, connection_id, exc)
            await hub.send(
                connection_id,
                "error",
                {"code": exc.code, "event": envelope.event, "detail": str(exc)},
            )
            return
        await hub.deliver(dispatches)

    @app.websocket(WEBSOCKET_PATH)
    async def session_socket(websocket: WebSocket) -> None:
        await websocket.accept()
        connection_id = uuid4().hex
        hub.add(connection_id, websocket)
        connection, dispatches = chat_manager.connect(connection_id, websocket.query_params.get("name"))
        await hub.send(
            connection_id,
            "connected",
            {"connectionId": connection_id, "displayName": connection.display_name},
        )
        await hub.deliver(dispatches)
        try:
            while True:
                raw = await websocket.receive_text()
                await handle_frame(connection_id, raw)
        except WebSocketDisconnect:
            logger.debug("Socket %s closed", connection_id)
        finally:
            hub.remove(connection_id)
            await hub.deliver(chat_manager.disconnect(connection_id))

    return app


def create_api_server(
    chat_manager: ChatManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> uvicorn.Server:
    app = create_api_app(chat_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    return uvicorn.Server(config)


def run_api_server(
    chat_manager: ChatManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Serve until interrupted."""
    create_api_server(chat_manager, host=host, port=port).run()
