"""FastAPI endpoints for workshop sessions and websocket sync."""

from __future__ import annotations

from collections import defaultdict, deque
import logging
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import BackendSettings, load_settings
from .errors import (
    BoundaryError,
    NotFoundError,
    PhaseError,
    ScoreLockedError,
    ScoreValidationError,
)
from .events import EventBus, SessionEvent
from .models import ParticipantStatus, Phase
from .orchestrator import SessionOrchestrator
from .questions import DEFAULT_QUESTION_SET_ID, InMemoryQuestionCatalog, QuestionCatalog
from .registry import MAX_NAME_LENGTH, ParticipantRegistry
from .scoring import ScoringEngine
from .state import participant_payload, score_payload
from .store import WorkshopStore, create_store

logger = logging.getLogger(__name__)

RESULT_PHASES = (Phase.SUMMARY, Phase.ACTIONS, Phase.COMPLETED)


class CreateSessionRequest(BaseModel):
    question_set_id: str = Field(default=DEFAULT_QUESTION_SET_ID, min_length=1, max_length=100)
    planned_duration_minutes: int | None = Field(default=None, gt=0)
    settings: dict[str, Any] = Field(default_factory=dict)


class SessionStateResponse(BaseModel):
    state: dict[str, Any]


class JoinRequest(BaseModel):
    name: str = Field(min_length=1, max_length=MAX_NAME_LENGTH)
    token: str = Field(min_length=1)
    is_facilitator: bool = False
    is_observer: bool = False


class ParticipantResponse(BaseModel):
    participant: dict[str, Any]


class StatusEnvelope(BaseModel):
    token: str = Field(min_length=1)
    status: ParticipantStatus


class ReadyEnvelope(BaseModel):
    token: str = Field(min_length=1)
    is_ready: bool


class ActionEnvelope(BaseModel):
    token: str = Field(min_length=1)
    action: dict[str, Any]


class ScoreEnvelope(BaseModel):
    token: str = Field(min_length=1)
    question_index: int = Field(ge=0)
    value: int


class ScoreResponse(BaseModel):
    score: dict[str, Any]


class SessionWebSocketHub:
    """Relays bus events to connected sockets.

    Events are queued by the bus subscriber and sent when a request or
    socket handler flushes, so delivery never runs inside a mutation.
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = defaultdict(set)
        self._owners: dict[WebSocket, str] = {}
        self._outbox: deque[SessionEvent] = deque()

    def enqueue(self, event: SessionEvent) -> None:
        self._outbox.append(event)

    async def connect(self, session_code: str, websocket: WebSocket, participant_id: str) -> None:
        await websocket.accept()
        self._connections[session_code].add(websocket)
        self._owners[websocket] = participant_id

    def disconnect(self, session_code: str, websocket: WebSocket) -> None:
        self._owners.pop(websocket, None)
        connections = self._connections.get(session_code)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            self._connections.pop(session_code, None)

    def is_connected(self, session_code: str, participant_id: str) -> bool:
        return any(self._owners.get(websocket) == participant_id for websocket in self._connections.get(session_code, ()))

    async def send_state(self, websocket: WebSocket, state: dict[str, Any]) -> None:
        await websocket.send_json({"type": "state.full", "state": state})

    async def broadcast(self, session_code: str, message: dict[str, Any]) -> None:
        stale_connections: list[WebSocket] = []
        for websocket in list(self._connections.get(session_code, set())):
            try:
                await websocket.send_json(message)
            except (RuntimeError, WebSocketDisconnect, OSError):
                logger.warning("Dropping stale websocket", extra={"session_code": session_code})
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(session_code=session_code, websocket=websocket)

    async def flush(self) -> None:
        while self._outbox:
            event = self._outbox.popleft()
            await self.broadcast(event.session_code, event.to_message())


def _default_catalog() -> QuestionCatalog:
    return InMemoryQuestionCatalog()


def create_app(
    store: WorkshopStore | None = None,
    catalog: QuestionCatalog | None = None,
    bus: EventBus | None = None,
    settings: BackendSettings | None = None,
) -> FastAPI:
    app = FastAPI(title="Workgroups Workshop API", version="0.1.0")
    settings = settings if settings is not None else load_settings()
    workshop_store = store if store is not None else create_store(settings.database_url)
    question_catalog = catalog if catalog is not None else _default_catalog()
    event_bus = bus if bus is not None else EventBus()

    registry = ParticipantRegistry(store=workshop_store, server_salt=settings.server_salt, bus=event_bus)
    scoring = ScoringEngine(store=workshop_store, catalog=question_catalog, bus=event_bus)
    orchestrator = SessionOrchestrator(
        store=workshop_store,
        catalog=question_catalog,
        registry=registry,
        scoring=scoring,
        bus=event_bus,
        code_length=settings.code_length,
    )

    websocket_hub = SessionWebSocketHub()
    event_bus.subscribe(websocket_hub.enqueue)
    app.state.websocket_hub = websocket_hub
    app.state.orchestrator = orchestrator

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ScoreValidationError)
    async def validation_handler(request: Request, exc: ScoreValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "scaleMin": exc.scale_min, "scaleMax": exc.scale_max},
        )

    @app.exception_handler(PhaseError)
    async def phase_handler(request: Request, exc: PhaseError) -> JSONResponse:
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "code": exc.code, "boundary": isinstance(exc, BoundaryError)},
        )

    @app.exception_handler(ScoreLockedError)
    async def locked_handler(request: Request, exc: ScoreLockedError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": str(exc), "code": "scores_revealed"})

    def get_orchestrator() -> SessionOrchestrator:
        return orchestrator

    @app.post("/api/sessions", response_model=SessionStateResponse)
    def create_session(
        payload: CreateSessionRequest,
        local_orchestrator: SessionOrchestrator = Depends(get_orchestrator),
    ) -> SessionStateResponse:
        session = local_orchestrator.create_session(
            question_set_id=payload.question_set_id,
            planned_duration_minutes=payload.planned_duration_minutes,
            settings=payload.settings,
        )
        return SessionStateResponse(state=local_orchestrator.snapshot(session))

    @app.get("/api/sessions/{code}", response_model=SessionStateResponse)
    def get_session(
        code: str,
        token: str | None = Query(default=None, min_length=1),
        local_orchestrator: SessionOrchestrator = Depends(get_orchestrator),
    ) -> SessionStateResponse:
        session = local_orchestrator.get_session(code)
        viewer = registry.require_participant(session, token) if token is not None else None
        return SessionStateResponse(state=local_orchestrator.snapshot(session, viewer=viewer))

    @app.post("/api/sessions/{code}/participants", response_model=ParticipantResponse)
    async def join_session(
        code: str,
        payload: JoinRequest,
        local_orchestrator: SessionOrchestrator = Depends(get_orchestrator),
    ) -> ParticipantResponse:
        session = local_orchestrator.get_session(code)
        try:
            participant = registry.join(
                session,
                name=payload.name,
                identity_token=payload.token,
                is_facilitator=payload.is_facilitator,
                is_observer=payload.is_observer,
            )
        except ValueError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        local_orchestrator.touch_session(session)
        await websocket_hub.flush()
        return ParticipantResponse(participant=participant_payload(participant))

    @app.post("/api/sessions/{code}/status", response_model=ParticipantResponse)
    async def post_status(
        code: str,
        payload: StatusEnvelope,
        local_orchestrator: SessionOrchestrator = Depends(get_orchestrator),
    ) -> ParticipantResponse:
        session = local_orchestrator.get_session(code)
        participant = registry.require_participant(session, payload.token)
        updated = registry.set_status(session, participant, payload.status)
        # A departure can complete the current question.
        if session.phase == Phase.SCORING:
            scoring.reveal_if_complete(session, session.current_question_index)
        await websocket_hub.flush()
        return ParticipantResponse(participant=participant_payload(updated))

    @app.post("/api/sessions/{code}/ready", response_model=ParticipantResponse)
    async def post_ready(
        code: str,
        payload: ReadyEnvelope,
        local_orchestrator: SessionOrchestrator = Depends(get_orchestrator),
    ) -> ParticipantResponse:
        session = local_orchestrator.get_session(code)
        participant = registry.require_participant(session, payload.token)
        updated = registry.set_ready(session, participant, payload.is_ready)
        await websocket_hub.flush()
        return ParticipantResponse(participant=participant_payload(updated))

    @app.post("/api/sessions/{code}/actions", response_model=SessionStateResponse)
    async def post_action(
        code: str,
        payload: ActionEnvelope,
        local_orchestrator: SessionOrchestrator = Depends(get_orchestrator),
    ) -> SessionStateResponse:
        session = local_orchestrator.get_session(code)
        participant = registry.require_participant(session, payload.token)
        if not participant.is_facilitator:
            raise HTTPException(status_code=403, detail="Action not allowed")
        try:
            updated = local_orchestrator.apply_action(session, payload.action)
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=422, detail="Malformed action") from exc
        await websocket_hub.flush()
        return SessionStateResponse(state=local_orchestrator.snapshot(updated, viewer=participant))

    @app.post("/api/sessions/{code}/scores", response_model=ScoreResponse)
    async def post_score(
        code: str,
        payload: ScoreEnvelope,
        local_orchestrator: SessionOrchestrator = Depends(get_orchestrator),
    ) -> ScoreResponse:
        session = local_orchestrator.get_session(code)
        participant = registry.require_participant(session, payload.token)
        if not participant.is_scorer:
            raise HTTPException(status_code=403, detail="Score not allowed")
        score = scoring.submit(session, participant, payload.question_index, payload.value)
        await websocket_hub.flush()
        current = scoring.get_score(session, participant, payload.question_index) or score
        return ScoreResponse(score={**score_payload(current), "value": current.value})

    @app.get("/api/sessions/{code}/summary")
    def get_summary(
        code: str,
        local_orchestrator: SessionOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        session = local_orchestrator.get_session(code)
        if session.phase not in RESULT_PHASES:
            raise PhaseError(f"Results are not available during {session.phase.value}")
        participants = registry.list_participants(session)
        individual = scoring.all_individual_scores(session, participants, local_orchestrator.question_set(session))
        return {
            "questions": scoring.get_all_scores_summary(session),
            "individualScores": {
                str(index): [
                    {
                        "value": item.value,
                        "participantId": item.participant_id,
                        "name": item.name,
                        "color": item.color.value,
                    }
                    for item in items
                ]
                for index, items in individual.items()
            },
        }

    @app.websocket("/ws/sessions/{code}")
    async def session_ws(
        websocket: WebSocket,
        code: str,
        local_orchestrator: SessionOrchestrator = Depends(get_orchestrator),
    ) -> None:
        token = websocket.query_params.get("token")
        if token is None or token == "":
            await websocket.close(code=1008)
            return
        try:
            session = local_orchestrator.get_session(code)
            participant = registry.require_participant(session, token)
        except NotFoundError:
            await websocket.close(code=1008)
            return

        if participant.status == ParticipantStatus.INACTIVE:
            participant = registry.set_status(session, participant, ParticipantStatus.ACTIVE)

        await websocket_hub.connect(session_code=session.code, websocket=websocket, participant_id=participant.id)
        try:
            await websocket_hub.send_state(
                websocket=websocket, state=local_orchestrator.snapshot(session, viewer=participant)
            )
            await websocket_hub.flush()
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.debug("Websocket closed", extra={"session_code": session.code, "participant_id": participant.id})
        finally:
            websocket_hub.disconnect(session_code=session.code, websocket=websocket)
            current = registry.get_participant(session, token)
            still_connected = current is not None and websocket_hub.is_connected(session.code, current.id)
            if current is not None and current.status == ParticipantStatus.ACTIVE and not still_connected:
                registry.set_status(session, current, ParticipantStatus.INACTIVE)
                latest = local_orchestrator.get_session(session.code)
                if latest.phase == Phase.SCORING:
                    scoring.reveal_if_complete(latest, latest.current_question_index)
            await websocket_hub.flush()

    return app


app = create_app()
