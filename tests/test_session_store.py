import time

import anyio
import pytest

from elicit.agents import (
    ConversationContext,
    InvalidRequestError,
    SessionNotFoundError,
)
from elicit.core.session_store import SessionStore

DAY = 24 * 60 * 60


def test_create_get_put_delete(store: SessionStore) -> None:
    ctx = store.create()
    assert ctx.status == "new"
    assert ctx.conversation_id in store

    ctx.append_turn("user", "我想做一个权限系统")
    store.put(ctx)

    stored = store.get(ctx.conversation_id)
    assert [t.content for t in stored.turns] == ["我想做一个权限系统"]
    assert store.delete(ctx.conversation_id) is True
    assert store.delete(ctx.conversation_id) is False
    with pytest.raises(SessionNotFoundError):
        store.get(ctx.conversation_id)


def test_get_returns_copies(store: SessionStore) -> None:
    """
    Mutating a returned context does not change the stored session.

    Args:
        store (SessionStore): The store fixture.
    """
    sid = store.create().conversation_id
    copy = store.get(sid)
    copy.append_turn("user", "hello")

    assert store.get(sid).turns == []


def test_create_rejects_blank_id(store: SessionStore) -> None:
    with pytest.raises(InvalidRequestError):
        store.create("  ")


def test_get_or_create(store: SessionStore) -> None:
    created = store.get_or_create("fixed-id")
    again = store.get_or_create("fixed-id")

    assert created.conversation_id == again.conversation_id == "fixed-id"
    assert len(store) == 1


def test_sweep_evicts_idle_sessions(store: SessionStore) -> None:
    """
    A session idle for 25 hours is evicted; a fresh one survives.
    """
    now = time.time()
    old = store.import_snapshot(
        {"conversation_id": "old", "created_at": now - 25 * 3600, "last_updated": now - 25 * 3600}
    )
    new = store.create()

    evicted = store.sweep(now=now)

    assert evicted == 1
    with pytest.raises(SessionNotFoundError):
        store.get(old.conversation_id)
    assert store.get(new.conversation_id).conversation_id == new.conversation_id


def test_sweep_keeps_sessions_within_ttl(store: SessionStore) -> None:
    sid = store.create().conversation_id

    assert store.sweep(now=time.time() + DAY - 60) == 0
    assert sid in store


@pytest.mark.anyio
async def test_sweep_skips_in_flight_sessions(store: SessionStore) -> None:
    sid = store.create().conversation_id

    async with store.lease(sid):
        assert store.in_flight(sid)
        assert store.sweep(now=time.time() + 2 * DAY) == 0

    assert not store.in_flight(sid)
    assert store.sweep(now=time.time() + 2 * DAY) == 1


@pytest.mark.anyio
async def test_lease_serializes_requests(store: SessionStore) -> None:
    order: list[str] = []

    async def worker(name: str) -> None:
        async with store.lease("s1"):
            order.append(f"{name}-in")
            await anyio.sleep(0.01)
            order.append(f"{name}-out")

    async with anyio.create_task_group() as tg:
        tg.start_soon(worker, "a")
        tg.start_soon(worker, "b")

    assert order in (
        ["a-in", "a-out", "b-in", "b-out"],
        ["b-in", "b-out", "a-in", "a-out"],
    )


def test_list_sessions(store: SessionStore) -> None:
    first = store.create()
    second = store.create()
    second.append_turn("user", "hi")
    store.put(second)

    rows = store.list_sessions()

    assert [r["conversation_id"] for r in rows] == [
        second.conversation_id,
        first.conversation_id,
    ]
    assert rows[0]["turns"] == 1


def test_import_snapshot_round_trip(store: SessionStore) -> None:
    ctx = ConversationContext(conversation_id="s1")
    ctx.append_turn("user", "密码连续失败5次锁定30分钟")

    restored = store.import_snapshot(ctx.to_dict())

    assert restored == ctx
    assert store.get("s1").turns[0].content == "密码连续失败5次锁定30分钟"


@pytest.mark.parametrize(
    "snapshot",
    [
        {"conversation_id": "broken", "version": 42},
        {"conversation_id": "broken", "turns": [{"role": "robot", "content": "x"}]},
    ],
)
def test_corrupted_snapshot_is_recreated(store: SessionStore, snapshot: dict) -> None:
    ctx = store.import_snapshot(snapshot)

    assert ctx.conversation_id == "broken"
    assert ctx.turns == []
    assert ctx.status == "new"


def test_corrupted_snapshot_without_id(store: SessionStore) -> None:
    ctx = store.import_snapshot("not a snapshot")

    assert ctx.conversation_id in store
    assert ctx.turns == []


def test_background_sweeper_runs() -> None:
    fast = SessionStore(idle_ttl=0.0, sweep_interval=0.01)
    fast.import_snapshot({"conversation_id": "stale", "last_updated": 1.0})

    with fast:
        deadline = time.time() + 2
        while "stale" in fast and time.time() < deadline:
            time.sleep(0.01)

    assert "stale" not in fast
    assert fast._thread is None
