from __future__ import annotations

import copy
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import anyio
from loguru import logger

from elicit.agents.types import (
    ConversationContext,
    InvalidRequestError,
    SessionNotFoundError,
    new_id,
)
from elicit.utils.env_cfg import load_session_env


@dataclass
class _Lease:
    lock: anyio.Lock
    holders: int = 0


@dataclass
class SessionStore:
    """
    Owns every ``ConversationContext`` in process memory.

    The session map is guarded by a mutex. Readers receive deep copies, so a
    context only changes through ``put``. Requests for one session are
    serialized through ``lease``; sessions with an active lease are in flight
    and never evicted by ``sweep``.
    """

    idle_ttl: float | None = None
    sweep_interval: float | None = None
    _sessions: dict[str, ConversationContext] = field(
        default_factory=dict, init=False, repr=False
    )
    _leases: dict[str, _Lease] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _stop: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _thread: threading.Thread | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        """
        Post-initialization to fill unset timings from the environment.
        """
        cfg = load_session_env()
        if self.idle_ttl is None:
            self.idle_ttl = cfg.idle_ttl
        if self.sweep_interval is None:
            self.sweep_interval = cfg.sweep_interval

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __enter__(self) -> SessionStore:
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    def create(self, session_id: str | None = None) -> ConversationContext:
        """
        Create and register an empty session.

        Args:
            session_id (str | None, optional): Id to use. Defaults to a new UUID.

        Returns:
            ConversationContext: A copy of the new session.

        Raises:
            InvalidRequestError: If ``session_id`` is given but blank.
        """
        if session_id is not None and not session_id.strip():
            raise InvalidRequestError("Session id must not be empty.")
        ctx = ConversationContext(conversation_id=session_id or new_id())
        with self._lock:
            if ctx.conversation_id in self._sessions:
                logger.warning("Replacing existing session {}", ctx.conversation_id)
            self._sessions[ctx.conversation_id] = ctx
        logger.info("Created session {}", ctx.conversation_id)
        return copy.deepcopy(ctx)

    def get(self, session_id: str) -> ConversationContext:
        """
        Return a copy of a stored session.

        Args:
            session_id (str): The session id.

        Returns:
            ConversationContext: A deep copy; mutate it and ``put`` it back to commit.

        Raises:
            SessionNotFoundError: If the session does not exist.
        """
        with self._lock:
            ctx = self._sessions.get(session_id)
            if ctx is None:
                raise SessionNotFoundError(session_id)
            return copy.deepcopy(ctx)

    def get_or_create(self, session_id: str | None = None) -> ConversationContext:
        if session_id is not None:
            try:
                return self.get(session_id)
            except SessionNotFoundError:
                pass
        return self.create(session_id)

    def put(self, context: ConversationContext) -> None:
        """
        Commit a context, replacing the stored one in a single step.

        Args:
            context (ConversationContext): The staged context. The store keeps this object.
        """
        context.last_updated = time.time()
        with self._lock:
            self._sessions[context.conversation_id] = context

    def delete(self, session_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info("Deleted session {}", session_id)
        return removed

    def in_flight(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._leases

    @asynccontextmanager
    async def lease(self, session_id: str) -> AsyncIterator[None]:
        """
        Hold the per-session lock for the duration of one request.

        Args:
            session_id (str): The session being processed.

        Yields:
            None: While the caller owns the session.
        """
        with self._lock:
            lease = self._leases.get(session_id)
            if lease is None:
                lease = self._leases[session_id] = _Lease(anyio.Lock())
            lease.holders += 1
        try:
            async with lease.lock:
                yield
        finally:
            with self._lock:
                lease.holders -= 1
                if lease.holders == 0:
                    self._leases.pop(session_id, None)

    def sweep(self, now: float | None = None) -> int:
        """
        Evict sessions idle for longer than ``idle_ttl``.

        Args:
            now (float | None, optional): Reference time. Defaults to the current time.

        Returns:
            int: Number of evicted sessions.
        """
        now = time.time() if now is None else now
        ttl = float(self.idle_ttl or 0)
        with self._lock:
            snapshot = list(self._sessions.items())
        evicted = 0
        for session_id, ctx in snapshot:
            if now - ctx.last_updated <= ttl:
                continue
            with self._lock:
                current = self._sessions.get(session_id)
                if current is None or session_id in self._leases:
                    continue
                if now - current.last_updated <= ttl:
                    continue
                del self._sessions[session_id]
            evicted += 1
            logger.debug("Evicted idle session {}", session_id)
        if evicted:
            logger.info("Sweep evicted {} idle session(s)", evicted)
        return evicted

    def list_sessions(self) -> list[dict[str, Any]]:
        """
        Summaries of all sessions, most recently updated first.

        Returns:
            list[dict[str, Any]]: One entry per session.
        """
        with self._lock:
            contexts = list(self._sessions.values())
        rows = [
            {
                "conversation_id": c.conversation_id,
                "status": c.status,
                "phase": c.phase,
                "turns": len(c.turns),
                "confidence": c.confidence,
                "created_at": c.created_at,
                "last_updated": c.last_updated,
            }
            for c in contexts
        ]
        return sorted(rows, key=lambda r: r["last_updated"], reverse=True)

    def import_snapshot(self, data: Any) -> ConversationContext:
        """
        Restore a session from an exported snapshot.

        A snapshot that cannot be deserialized is discarded and the session is
        recreated empty under the same id when one can be read.

        Args:
            data (Any): A snapshot produced by ``ConversationContext.to_dict``.

        Returns:
            ConversationContext: A copy of the restored or recreated session.
        """
        try:
            ctx = ConversationContext.from_dict(data)
        except ValueError as e:
            session_id = data.get("conversation_id") if isinstance(data, dict) else None
            if not isinstance(session_id, str) or not session_id.strip():
                session_id = None
            logger.warning("Discarding corrupted snapshot for {}: {}", session_id, e)
            return self.create(session_id)
        with self._lock:
            self._sessions[ctx.conversation_id] = ctx
        logger.info("Imported session {}", ctx.conversation_id)
        return copy.deepcopy(ctx)

    def _run_sweeper(self) -> None:
        interval = float(self.sweep_interval or 0)
        while not self._stop.wait(interval):
            try:
                self.sweep()
            except Exception as e:
                logger.exception("Session sweep failed: {}", e)

    def start(self) -> None:
        """
        Start the background sweeper thread. Calling it twice is a no-op.
        """
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run_sweeper, name="elicit-session-sweeper", daemon=True
        )
        self._thread.start()
        logger.info(
            "Session sweeper started (interval={}s, idle_ttl={}s)",
            self.sweep_interval,
            self.idle_ttl,
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop the background sweeper thread.

        Args:
            timeout (float | None, optional): Seconds to wait for the thread. Defaults to 5.0.
        """
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("Session sweeper stopped")
