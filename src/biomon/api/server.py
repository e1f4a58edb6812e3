"""
BIOMON FastAPI Server.

Architecture:
- One SessionManager per server process, the source of truth
- GM and player clients send commands over /ws
- Every mutation is broadcast as a full state snapshot
- Read-only tools watch /external

Endpoints:
- GET  /health    - Liveness check
- GET  /state     - Full session snapshot
- GET  /tables    - Loaded response tables
- WS   /ws        - Command channel + state stream
- WS   /external  - Read-only state stream
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Callable

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ValidationError

from ..rules.tables import load_tables
from ..state import GameEvent, SessionManager, SessionStore
from ..tools.dice import DieRoller
from .schemas import (
    CharacterAddCommand,
    CharacterRemoveCommand,
    CharacterUpdateCommand,
    ConditionClearCommand,
    ConditionToggleCommand,
    RollApplyCommand,
    RollClearCommand,
    RollEventCommand,
    RollTriggerCommand,
    SessionImportCommand,
    SessionLoadCommand,
    SessionSaveCommand,
)

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections for real-time state updates."""

    def __init__(self):
        self.active_connections: list[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: dict):
        """Broadcast message to all connected clients."""
        disconnected = []
        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Dropping websocket after failed send: {e}")
                disconnected.append(connection)

        # Clean up disconnected clients
        for conn in disconnected:
            self.disconnect(conn)

    async def send_personal(self, websocket: WebSocket, message: dict):
        """Send message to a specific client."""
        await websocket.send_json(message)


# (payload schema or None, handler) per command type
CommandHandler = Callable[[BaseModel | None], dict | None]


class BiomonAPI:
    """
    BIOMON session backend.

    Wraps a SessionManager and serializes command handling: each command
    runs under one lock, so no client ever sees a half-applied change.
    Autosaves are debounced until the session has been quiet for
    autosave_delay seconds.
    """

    def __init__(
        self,
        sessions_dir: Path | str = "sessions",
        tables_path: Path | str | None = None,
        autosave_delay: float = 1.0,
        store: SessionStore | None = None,
        roll_die: DieRoller | None = None,
    ):
        # Raises TableConfigError; a bad table must stop the server here
        tables = load_tables(tables_path)

        self.manager = SessionManager(
            store if store is not None else Path(sessions_dir),
            tables=tables,
            roll_die=roll_die,
            on_dirty=self._on_dirty,
        )
        self.autosave_delay = autosave_delay
        self.autosave_info: dict = {"found": False}

        # WebSocket connection managers
        self.connections = ConnectionManager()
        self.external = ConnectionManager()

        self._lock: asyncio.Lock | None = None
        self._autosave_task: asyncio.Task | None = None
        self._mutations = 0

        # Domain events are queued during a command and forwarded after it
        self._pending_events: list[GameEvent] = []
        self.manager.bus.on_all(self._pending_events.append)

        self._commands: dict[str, tuple[type[BaseModel] | None, CommandHandler]] = {
            "character:add": (CharacterAddCommand, self._character_add),
            "character:remove": (CharacterRemoveCommand, self._character_remove),
            "character:update": (CharacterUpdateCommand, self._character_update),
            "party:clear": (None, self._party_clear),
            "roll:trigger": (RollTriggerCommand, self._roll_trigger),
            "roll:apply": (RollApplyCommand, self._roll_apply),
            "roll:applyStressDelta": (RollEventCommand, self._roll_apply_stress_delta),
            "roll:undo": (RollEventCommand, self._roll_undo),
            "roll:clear": (RollClearCommand, self._roll_clear),
            "condition:clear": (ConditionClearCommand, self._condition_clear),
            "condition:toggle": (ConditionToggleCommand, self._condition_toggle),
            "session:save": (SessionSaveCommand, self._session_save),
            "session:load": (SessionLoadCommand, self._session_load),
            "session:list": (None, self._session_list),
            "session:clear": (None, self._session_clear),
            "session:export": (None, self._session_export),
            "session:import": (SessionImportCommand, self._session_import),
            "ping": (None, lambda _: {"type": "pong"}),
        }

    @property
    def lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    @property
    def commands(self) -> list[str]:
        return sorted(self._commands)

    def _on_dirty(self) -> None:
        self._mutations += 1

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def startup(self) -> dict:
        """Restore the autosave, if any."""
        self.autosave_info = self.manager.load_autosave()
        # Restoring emits SESSION_LOADED before any client is listening
        self._pending_events.clear()
        return self.autosave_info

    async def flush(self) -> None:
        """Write any pending autosave immediately."""
        if self._autosave_task and not self._autosave_task.done():
            self._autosave_task.cancel()
        self._autosave_task = None
        async with self.lock:
            if self.manager.dirty:
                self.manager.autosave()

    def schedule_autosave(self) -> None:
        """(Re)start the debounce timer."""
        if self._autosave_task and not self._autosave_task.done():
            self._autosave_task.cancel()
        self._autosave_task = asyncio.create_task(self._autosave_later())

    async def _autosave_later(self) -> None:
        await asyncio.sleep(self.autosave_delay)
        async with self.lock:
            if self.manager.dirty:
                self.manager.autosave()

    # -------------------------------------------------------------------------
    # State Serialization
    # -------------------------------------------------------------------------

    def get_state(self) -> dict:
        return self.manager.snapshot()

    def get_tables(self) -> dict:
        return {
            severity.value: [entry.model_dump(mode="json") for entry in table]
            for severity, table in self.manager.tables.items()
        }

    async def publish(self, events: list[GameEvent]) -> None:
        """Forward domain events, then broadcast the new state everywhere."""
        for event in events:
            await self.connections.broadcast(
                jsonable_encoder({"type": "game_event", **event.to_dict()})
            )
        message = {"type": "state", "state": self.get_state()}
        await self.connections.broadcast(message)
        await self.external.broadcast(message)

    # -------------------------------------------------------------------------
    # Command Dispatch
    # -------------------------------------------------------------------------

    async def handle_message(self, websocket: WebSocket, raw: str) -> None:
        """Validate one client message, run it, and publish the result."""
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            await self.connections.send_personal(
                websocket, {"type": "error", "message": "Message is not valid JSON"}
            )
            return
        if not isinstance(message, dict):
            await self.connections.send_personal(
                websocket, {"type": "error", "message": "Message must be a JSON object"}
            )
            return

        command = str(message.get("type", ""))
        if command not in self._commands:
            logger.debug(f"Unknown command {command!r}")
            await self.connections.send_personal(
                websocket, {"type": "error", "message": f"Unknown command: {command}"}
            )
            return

        schema, handler = self._commands[command]
        try:
            payload = schema.model_validate(message) if schema else None
        except ValidationError as e:
            logger.debug(f"Rejected {command} payload: {e.error_count()} errors")
            await self.connections.send_personal(
                websocket,
                {"type": "error", "command": command, "message": _describe(e)},
            )
            return

        async with self.lock:
            before = self._mutations
            try:
                reply = handler(payload)
            finally:
                events = list(self._pending_events)
                self._pending_events.clear()
            changed = self._mutations != before

        if reply is not None:
            await self.connections.send_personal(websocket, jsonable_encoder(reply))
        if changed:
            await self.publish(events)
            self.schedule_autosave()

    # Crew

    def _character_add(self, cmd: CharacterAddCommand) -> None:
        self.manager.add_character(
            name=cmd.name,
            max_health=cmd.max_health,
            health=cmd.health,
            stress=cmd.stress,
            resolve=cmd.resolve,
        )

    def _character_remove(self, cmd: CharacterRemoveCommand) -> None:
        self.manager.remove_character(cmd.character_id)

    def _character_update(self, cmd: CharacterUpdateCommand) -> None:
        self.manager.update_character(
            cmd.character_id,
            name=cmd.name,
            max_health=cmd.max_health,
            health=cmd.health,
            stress=cmd.stress,
            resolve=cmd.resolve,
        )

    def _party_clear(self, _) -> None:
        self.manager.clear_party()

    # Rolls

    def _roll_trigger(self, cmd: RollTriggerCommand) -> None:
        self.manager.trigger_roll(cmd.character_id, cmd.severity, cmd.modifiers)

    def _roll_apply(self, cmd: RollApplyCommand) -> None:
        self.manager.apply_outcome(cmd.character_id, cmd.event_id, cmd.chosen_entry_id)

    def _roll_apply_stress_delta(self, cmd: RollEventCommand) -> None:
        self.manager.apply_stress_delta(cmd.character_id, cmd.event_id)

    def _roll_undo(self, cmd: RollEventCommand) -> None:
        self.manager.undo_outcome(cmd.character_id, cmd.event_id)

    def _roll_clear(self, cmd: RollClearCommand) -> None:
        self.manager.clear_outcome(cmd.character_id)

    # Conditions

    def _condition_clear(self, cmd: ConditionClearCommand) -> None:
        self.manager.clear_condition(cmd.character_id, cmd.condition_id)

    def _condition_toggle(self, cmd: ConditionToggleCommand) -> None:
        self.manager.toggle_condition(cmd.character_id, cmd.condition)

    # Session

    def _session_save(self, cmd: SessionSaveCommand) -> dict:
        return {"type": "session:save:result", **self.manager.save_campaign(cmd.campaign_name)}

    def _session_load(self, cmd: SessionLoadCommand) -> dict:
        return {"type": "session:load:result", **self.manager.load_campaign(cmd.filename)}

    def _session_list(self, _) -> dict:
        return {"type": "session:list:result", "campaigns": self.manager.list_campaigns()}

    def _session_clear(self, _) -> dict:
        archived = self.manager.clear_session()
        return {"type": "session:clear:result", "success": True, "archived": archived}

    def _session_export(self, _) -> dict:
        return {"type": "session:export:result", "state": self.get_state()}

    def _session_import(self, cmd: SessionImportCommand) -> dict:
        return {"type": "session:import:result", **self.manager.import_snapshot(cmd.state)}


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    field = ".".join(str(p) for p in first.get("loc", ())) or "payload"
    return f"{field}: {first.get('msg', 'invalid value')}"


def create_app(
    sessions_dir: Path | str = "sessions",
    tables_path: Path | str | None = None,
    cors_origins: list[str] | None = None,
    autosave_delay: float = 1.0,
    store: SessionStore | None = None,
    roll_die: DieRoller | None = None,
) -> FastAPI:
    """
    Create FastAPI application for BIOMON.

    Raises:
        TableConfigError: if the response tables are invalid
    """

    # Initialize API backend
    api = BiomonAPI(
        sessions_dir=sessions_dir,
        tables_path=tables_path,
        autosave_delay=autosave_delay,
        store=store,
        roll_die=roll_die,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        # Startup
        api.startup()
        yield
        # Shutdown - write any pending autosave
        await api.flush()

    app = FastAPI(
        title="BIOMON",
        description="Crew vitals monitor with stress and panic roll resolution",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS middleware for the GM/player pages
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["http://localhost:3051"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Store API instance for handlers and tests
    app.state.api = api

    # -------------------------------------------------------------------------
    # REST Endpoints
    # -------------------------------------------------------------------------

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"ok": True, "service": "biomon"}

    @app.get("/state")
    async def get_state():
        """Full session snapshot."""
        return api.get_state()

    @app.get("/tables")
    async def get_tables():
        """Loaded stress and panic tables."""
        return api.get_tables()

    # -------------------------------------------------------------------------
    # WebSocket Endpoints
    # -------------------------------------------------------------------------

    @app.websocket("/ws")
    async def websocket_commands(websocket: WebSocket):
        """
        Command channel.

        Clients get the current state and autosave info on connect, then
        send commands and receive every state change.
        """
        await api.connections.connect(websocket)
        logger.info(f"Client connected ({len(api.connections.active_connections)} total)")

        try:
            await websocket.send_json({"type": "state", "state": api.get_state()})
            await websocket.send_json(
                jsonable_encoder({"type": "session:autosave:info", "info": api.autosave_info})
            )

            while True:
                try:
                    raw = await websocket.receive_text()
                except WebSocketDisconnect:
                    break
                await api.handle_message(websocket, raw)

        finally:
            api.connections.disconnect(websocket)
            logger.info("Client disconnected")

    @app.websocket("/external")
    async def websocket_external(websocket: WebSocket):
        """Read-only state stream. Anything the client sends is ignored."""
        await api.external.connect(websocket)
        logger.info("External client connected")

        try:
            await websocket.send_json({"type": "state", "state": api.get_state()})

            while True:
                try:
                    await websocket.receive_text()
                except WebSocketDisconnect:
                    break
                logger.debug("Ignoring message on read-only external feed")

        finally:
            api.external.disconnect(websocket)
            logger.info("External client disconnected")

    return app
