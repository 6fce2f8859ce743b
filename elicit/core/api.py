from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Literal, cast

from fastapi import FastAPI, HTTPException, Request
from loguru import logger
from pydantic import BaseModel, Field
from starlette.middleware.cors import CORSMiddleware

from elicit.agents.orchestrator import ClarificationEngine
from elicit.agents.types import InvalidRequestError, SessionNotFoundError
from elicit.core.session_store import SessionStore
from elicit.utils.env_cfg import load_host_env, load_session_env


# --- Pydantic models for request and response payloads ---


class MessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: float | None = None
    type: Literal["clarification", "confirmation", "parsing", "document"] | None = None


class ClarifyIn(BaseModel):
    message: str
    session_id: str | None = None
    messages: list[MessageIn] | None = None


class ClarifyOut(BaseModel):
    success: bool
    session_id: str
    response: str
    status: str
    phase: str
    confidence: float
    clarification_questions: list[str] | None = None
    requirement_document: dict[str, Any] | None = None
    error: str | None = None


class ResetOut(BaseModel):
    ok: bool
    session_id: str
    previous_session_id: str


class SessionListOut(BaseModel):
    sessions: list[dict[str, Any]] = Field(default_factory=list)


class DeleteOut(BaseModel):
    ok: bool
    session_id: str


def _engine(request: Request) -> ClarificationEngine:
    return cast(ClarificationEngine, request.app.state.engine)


# --- API Endpoints ---


async def clarify(payload: ClarifyIn, request: Request) -> ClarifyOut:
    """
    Process one user message in a clarification session.

    Args:
        payload (ClarifyIn): The message, optional session id and optional client history.
        request (Request): The incoming request.

    Returns:
        ClarifyOut: The engine's reply for the turn.

    Raises:
        HTTPException: If the message or session id is empty or the history is malformed.
    """
    prior = (
        [m.model_dump(exclude_none=True) for m in payload.messages]
        if payload.messages is not None
        else None
    )
    try:
        result = await _engine(request).process_message(
            payload.message, prior_messages=prior, session_id=payload.session_id
        )
    except InvalidRequestError as e:
        logger.error("HTTPException: Invalid clarify request: {}", e)
        raise HTTPException(status_code=400, detail=str(e))
    data = result.to_dict()
    data["session_id"] = data.pop("conversation_id")
    return ClarifyOut(**data)


async def reset_session(session_id: str, request: Request) -> ResetOut:
    """
    Discard a session and return the id of its fresh replacement.

    Args:
        session_id (str): The session to reset.
        request (Request): The incoming request.

    Returns:
        ResetOut: The new session id.
    """
    new_id = await _engine(request).reset_conversation(session_id)
    return ResetOut(ok=True, session_id=new_id, previous_session_id=session_id)


def export_session(session_id: str, request: Request) -> dict[str, Any]:
    """
    Export a session snapshot.

    Raises:
        HTTPException: If the session does not exist.
    """
    try:
        return _engine(request).export_conversation(session_id)
    except SessionNotFoundError:
        logger.error("HTTPException: Session {} not found", session_id)
        raise HTTPException(status_code=404, detail="Session not found")


def list_sessions(request: Request) -> SessionListOut:
    return SessionListOut(sessions=_engine(request).store.list_sessions())


def delete_session(session_id: str, request: Request) -> DeleteOut:
    """
    Delete a session.

    Raises:
        HTTPException: If the session does not exist.
    """
    if not _engine(request).store.delete(session_id):
        logger.error("HTTPException: Session {} not found", session_id)
        raise HTTPException(status_code=404, detail="Session not found")
    return DeleteOut(ok=True, session_id=session_id)


def create_app(
    engine: ClarificationEngine | None = None, start_sweeper: bool | None = None
) -> FastAPI:
    """
    Build the HTTP application around a clarification engine.

    Args:
        engine (ClarificationEngine | None, optional): The engine to serve. Defaults to one backed by a new store and the OpenAI collaborators.
        start_sweeper (bool | None, optional): Whether the lifespan runs the session sweeper. Defaults to ``SESSION_SWEEPER``.

    Returns:
        FastAPI: The configured application.
    """
    engine = engine or ClarificationEngine(SessionStore())
    if start_sweeper is None:
        start_sweeper = load_session_env().autostart_sweeper

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        store: SessionStore = app.state.engine.store
        if start_sweeper:
            store.start()
        try:
            yield
        finally:
            if start_sweeper:
                store.stop()

    app = FastAPI(title="Elicit Requirements Clarification", lifespan=lifespan)
    app.state.engine = engine
    app.add_middleware(
        middleware_class=cast(Any, CORSMiddleware),
        allow_origins=load_host_env().cors_allowed_origins.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_api_route(
        "/clarify", clarify, methods=["POST"], response_model=ClarifyOut, tags=["Clarify"]
    )
    app.add_api_route(
        "/sessions", list_sessions, methods=["GET"], response_model=SessionListOut, tags=["Sessions"]
    )
    app.add_api_route(
        "/sessions/{session_id}/reset", reset_session, methods=["POST"], response_model=ResetOut, tags=["Sessions"]
    )
    app.add_api_route(
        "/sessions/{session_id}/export", export_session, methods=["GET"], tags=["Sessions"]
    )
    app.add_api_route(
        "/sessions/{session_id}", delete_session, methods=["DELETE"], response_model=DeleteOut, tags=["Sessions"]
    )
    return app


app = create_app()
