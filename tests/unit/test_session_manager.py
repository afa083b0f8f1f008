"""
Unit Tests for Session Manager

Tests the in-memory tier (TTL, transcript cap, sweep, ownership) and the
write-behind / read-through behaviour of the persistent tier.
"""

import asyncio
import pytest
import sys
import os
from unittest.mock import MagicMock, Mock

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))

from socratic_math_tutor.errors import SessionExpired, SessionNotFound
from socratic_math_tutor.session_manager import SessionManager
from socratic_math_tutor.session_repository import (
    InMemorySessionRepository,
    SupabaseSessionRepository,
)
from socratic_math_tutor.session_state import (
    DifficultyMode,
    Message,
    ProblemRef,
    Role,
    SessionStatus,
)

PROBLEM = ProblemRef(text="2x + 5 = 13", problem_type="linear_equation")


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FailingRepository:
    """Repository whose backend is down."""

    def __init__(self):
        self.calls = 0

    def save(self, record):
        self.calls += 1
        raise ConnectionError("database unreachable")

    def load(self, session_id, user_id):
        self.calls += 1
        raise ConnectionError("database unreachable")

    def delete(self, session_id, user_id):
        self.calls += 1
        raise ConnectionError("database unreachable")


class RecordingRepository(InMemorySessionRepository):
    """In-memory repository that remembers the transcript length of every save."""

    def __init__(self):
        super().__init__()
        self.saved_lengths = []

    def save(self, record):
        self.saved_lengths.append(len(record["messages"]))
        super().save(record)


def user(text):
    return Message.create(Role.USER, text)


class TestInMemoryTier:
    """Sessions without a repository."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def manager(self, clock):
        return SessionManager(clock=clock)

    @pytest.mark.asyncio
    async def test_create_and_get(self, manager):
        session = await manager.create_session(PROBLEM, difficulty=DifficultyMode.HIGH)
        fetched = await manager.get_session(session.id)

        assert fetched is session
        assert fetched.messages == ()
        assert fetched.difficulty == DifficultyMode.HIGH
        assert fetched.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_unknown_session(self, manager):
        assert await manager.get_session("missing") is None
        with pytest.raises(SessionNotFound):
            await manager.append_message("missing", user("hello"))

    @pytest.mark.asyncio
    async def test_append_keeps_order(self, manager):
        session = await manager.create_session(PROBLEM)
        for text in ["first", "second", "third"]:
            session = await manager.append_message(session.id, user(text))

        assert [m.content for m in session.messages] == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_snapshots_are_not_mutated(self, manager):
        """A snapshot taken before an append keeps its old transcript."""
        session = await manager.create_session(PROBLEM)
        before = await manager.get_session(session.id)
        await manager.append_message(session.id, user("7"))

        assert before.messages == ()
        assert len((await manager.get_session(session.id)).messages) == 1

    @pytest.mark.asyncio
    async def test_transcript_cap_drops_oldest(self, manager):
        session = await manager.create_session(PROBLEM)
        for i in range(105):
            session = await manager.append_message(session.id, user(f"message {i}"))

        assert len(session.messages) == 100
        assert session.messages[0].content == "message 5"
        assert session.messages[-1].content == "message 104"

    @pytest.mark.asyncio
    async def test_expired_session_is_evicted(self, manager, clock):
        """Past the TTL: first append reports expiry, then the id is unknown."""
        session = await manager.create_session(PROBLEM)
        clock.advance(30 * 60 + 1)

        with pytest.raises(SessionExpired):
            await manager.append_message(session.id, user("hello"))
        with pytest.raises(SessionNotFound):
            await manager.append_message(session.id, user("hello again"))

    @pytest.mark.asyncio
    async def test_ttl_measured_from_creation(self, manager, clock):
        """Activity does not extend the lifetime."""
        session = await manager.create_session(PROBLEM)
        clock.advance(25 * 60)
        await manager.append_message(session.id, user("still here"))
        clock.advance(6 * 60)

        assert await manager.get_session(session.id) is None

    @pytest.mark.asyncio
    async def test_session_expired_is_a_not_found(self, manager, clock):
        session = await manager.create_session(PROBLEM)
        clock.advance(3600)

        with pytest.raises(SessionNotFound):
            await manager.append_message(session.id, user("late"))

    @pytest.mark.asyncio
    async def test_sweep_removes_only_expired(self, manager, clock):
        await manager.create_session(PROBLEM)
        await manager.create_session(PROBLEM)
        clock.advance(31 * 60)
        fresh = await manager.create_session(PROBLEM)

        assert manager.sweep_expired() == 2
        assert manager.stats()["active_sessions"] == 1
        assert await manager.get_session(fresh.id) is not None
        assert manager.sweep_expired() == 0

    @pytest.mark.asyncio
    async def test_delete(self, manager):
        session = await manager.create_session(PROBLEM)

        assert await manager.delete_session(session.id) is True
        assert await manager.delete_session(session.id) is False
        assert await manager.get_session(session.id) is None

    @pytest.mark.asyncio
    async def test_other_user_cannot_see_session(self, manager):
        session = await manager.create_session(PROBLEM, user_id="alice")

        assert await manager.get_session(session.id, user_id="bob") is None
        with pytest.raises(SessionNotFound):
            await manager.append_message(session.id, user("hi"), user_id="bob")
        assert await manager.get_session(session.id, user_id="alice") is not None

    @pytest.mark.asyncio
    async def test_mark_completed_and_hint_level(self, manager):
        session = await manager.create_session(PROBLEM)
        manager.record_hint_level(session.id, 2)
        completed = await manager.mark_completed(session.id)

        assert completed.status == SessionStatus.COMPLETED
        assert completed.last_hint_level == 2
        assert await manager.mark_completed("missing") is None

    @pytest.mark.asyncio
    async def test_mark_completed_only_once(self, manager):
        """The second caller sees None, so only one turn reports the completion."""
        session = await manager.create_session(PROBLEM)
        results = await asyncio.gather(
            manager.mark_completed(session.id),
            manager.mark_completed(session.id),
        )

        assert sum(result is not None for result in results) == 1
        assert (await manager.get_session(session.id)).status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_other_user_cannot_delete(self, manager):
        session = await manager.create_session(PROBLEM, user_id="alice")

        assert await manager.delete_session(session.id, user_id="bob") is False
        assert await manager.get_session(session.id, user_id="alice") is not None


class TestPersistentTier:
    """Write-behind and read-through against a repository."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.mark.asyncio
    async def test_guest_never_touches_repository(self, clock):
        """Guest sessions stay in memory only."""
        repository = Mock()
        manager = SessionManager(repository=repository, clock=clock)

        session = await manager.create_session(PROBLEM)
        await manager.append_message(session.id, user("7"))
        await manager.delete_session(session.id)
        await manager.flush()

        repository.save.assert_not_called()
        repository.load.assert_not_called()
        repository.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_repository_does_not_break_turns(self, clock):
        """Writes fail in the background; appends still succeed."""
        repository = FailingRepository()
        manager = SessionManager(repository=repository, clock=clock)

        session = await manager.create_session(PROBLEM, user_id="user-1")
        session = await manager.append_message(session.id, user("x = 4"), user_id="user-1")
        await manager.flush()

        assert [m.content for m in session.messages] == ["x = 4"]
        assert repository.calls == 2
        assert manager.persistence_failures == 2
        assert manager.stats()["pending_writes"] == 0

    @pytest.mark.asyncio
    async def test_failing_load_degrades_to_not_found(self, clock):
        manager = SessionManager(repository=FailingRepository(), clock=clock)

        assert await manager.get_session("unknown", user_id="user-1") is None
        assert manager.persistence_failures == 1

    @pytest.mark.asyncio
    async def test_writes_land_in_order(self, clock):
        repository = RecordingRepository()
        manager = SessionManager(repository=repository, clock=clock)

        session = await manager.create_session(PROBLEM, user_id="user-1")
        for text in ["a", "b", "c"]:
            await manager.append_message(session.id, user(text), user_id="user-1")
        await manager.flush()

        assert repository.saved_lengths == [0, 1, 2, 3]
        record = repository.load(session.id, "user-1")
        assert [m["content"] for m in record["messages"]] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_read_through_after_restart(self, clock):
        """A fresh manager hydrates an identified session from the repository."""
        repository = InMemorySessionRepository()
        first = SessionManager(repository=repository, clock=clock)
        session = await first.create_session(PROBLEM, user_id="user-1")
        await first.append_message(session.id, user("I think it's 4"), user_id="user-1")
        await first.flush()

        second = SessionManager(repository=repository, clock=clock)
        hydrated = await second.get_session(session.id, user_id="user-1")

        assert hydrated is not None
        assert hydrated.problem == PROBLEM
        assert [m.content for m in hydrated.messages] == ["I think it's 4"]
        assert await second.get_session(session.id) is hydrated

    @pytest.mark.asyncio
    async def test_append_hydrates_unknown_session(self, clock):
        repository = InMemorySessionRepository()
        first = SessionManager(repository=repository, clock=clock)
        session = await first.create_session(PROBLEM, user_id="user-1")
        await first.flush()

        second = SessionManager(repository=repository, clock=clock)
        updated = await second.append_message(session.id, user("5"), user_id="user-1")
        await second.flush()

        assert [m.content for m in updated.messages] == ["5"]
        assert len(repository.load(session.id, "user-1")["messages"]) == 1

    @pytest.mark.asyncio
    async def test_expired_record_is_deleted(self, clock):
        """Hydrating an expired record deletes it and reports not found."""
        repository = InMemorySessionRepository()
        first = SessionManager(repository=repository, clock=clock)
        session = await first.create_session(PROBLEM, user_id="user-1")
        await first.flush()
        assert len(repository) == 1

        clock.advance(31 * 60)
        second = SessionManager(repository=repository, clock=clock)

        assert await second.get_session(session.id, user_id="user-1") is None
        await second.flush()
        assert len(repository) == 0

    @pytest.mark.asyncio
    async def test_delete_removes_both_tiers(self, clock):
        repository = InMemorySessionRepository()
        manager = SessionManager(repository=repository, clock=clock)
        session = await manager.create_session(PROBLEM, user_id="user-1")
        await manager.flush()

        assert await manager.delete_session(session.id, user_id="user-1") is True
        assert len(repository) == 0

    @pytest.mark.asyncio
    async def test_delete_right_after_append(self, clock):
        """Saves still queued when the delete arrives cannot bring the row back."""
        repository = InMemorySessionRepository()
        manager = SessionManager(repository=repository, clock=clock)
        session = await manager.create_session(PROBLEM, user_id="user-1")
        await manager.append_message(session.id, user("x = 4"), user_id="user-1")

        assert await manager.delete_session(session.id, user_id="user-1") is True
        assert len(repository) == 0

        await manager.flush()
        assert len(repository) == 0
        assert await manager.get_session(session.id, user_id="user-1") is None
        with pytest.raises(SessionNotFound):
            await manager.append_message(session.id, user("again"), user_id="user-1")
        assert await manager.mark_completed(session.id) is None

        await manager.flush()
        assert len(repository) == 0
        restarted = SessionManager(repository=repository, clock=clock)
        assert await restarted.get_session(session.id, user_id="user-1") is None

    @pytest.mark.asyncio
    async def test_swept_identified_session_reports_expiry(self, clock):
        """Past the TTL an identified session is expired even after the sweep evicted it."""
        repository = InMemorySessionRepository()
        manager = SessionManager(repository=repository, clock=clock)
        session = await manager.create_session(PROBLEM, user_id="user-1")
        await manager.flush()

        clock.advance(31 * 60)
        assert manager.sweep_expired() == 1

        with pytest.raises(SessionExpired):
            await manager.append_message(session.id, user("late"), user_id="user-1")
        await manager.flush()
        assert len(repository) == 0

        with pytest.raises(SessionNotFound) as excinfo:
            await manager.append_message(session.id, user("later"), user_id="user-1")
        assert not isinstance(excinfo.value, SessionExpired)


class TestConcurrentAccess:
    """Many coroutines touching one session."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.mark.asyncio
    async def test_concurrent_appends_keep_last_messages_in_order(self, clock):
        manager = SessionManager(clock=clock)
        session = await manager.create_session(PROBLEM)

        await asyncio.gather(*[
            manager.append_message(session.id, user(f"m{i}")) for i in range(150)
        ])

        stored = await manager.get_session(session.id)
        assert len(stored.messages) == 100
        assert [m.content for m in stored.messages] == [f"m{i}" for i in range(50, 150)]

    @pytest.mark.asyncio
    async def test_concurrent_appends_with_write_behind(self, clock):
        """The persisted record ends with the final transcript."""
        repository = RecordingRepository()
        manager = SessionManager(repository=repository, clock=clock)
        session = await manager.create_session(PROBLEM, user_id="user-1")

        await asyncio.gather(*[
            manager.append_message(session.id, user(f"m{i}"), user_id="user-1") for i in range(150)
        ])
        await manager.flush()

        record = repository.load(session.id, "user-1")
        assert [m["content"] for m in record["messages"]] == [f"m{i}" for i in range(50, 150)]
        assert repository.saved_lengths == sorted(repository.saved_lengths)

    @pytest.mark.asyncio
    async def test_sweep_interleaved_with_appends(self, clock):
        """Sweeps running between appends only evict the expired session."""
        manager = SessionManager(clock=clock)
        stale = await manager.create_session(PROBLEM)
        clock.advance(31 * 60)
        fresh = await manager.create_session(PROBLEM)
        evicted = []

        async def sweep():
            for _ in range(20):
                evicted.append(await asyncio.to_thread(manager.sweep_expired))
                await asyncio.sleep(0)

        async def write():
            for i in range(50):
                await manager.append_message(fresh.id, user(f"m{i}"))
                await asyncio.sleep(0)

        await asyncio.gather(sweep(), write())

        stored = await manager.get_session(fresh.id)
        assert sum(evicted) == 1
        assert [m.content for m in stored.messages] == [f"m{i}" for i in range(50)]
        assert await manager.get_session(stale.id) is None


class TestSerialization:

    @pytest.fixture
    def manager(self):
        return SessionManager(clock=FakeClock())

    @pytest.mark.asyncio
    async def test_record_round_trip(self, manager):
        session = await manager.create_session(PROBLEM, user_id="user-1", difficulty=DifficultyMode.ELEMENTARY)
        session = await manager.append_message(session.id, user("x = 4"), user_id="user-1")

        record = manager.session_to_dict(session)
        restored = manager.dict_to_session(record)

        assert record["difficulty_mode"] == "elementary"
        assert record["problem"]["type"] == "linear_equation"
        assert restored.id == session.id
        assert restored.messages == session.messages
        assert restored.difficulty == DifficultyMode.ELEMENTARY
        assert restored.created_at == pytest.approx(session.created_at)

    def test_expires_at_is_created_plus_ttl(self, manager):
        record = manager.session_to_dict(
            manager.dict_to_session({"id": "s1", "started_at": "2024-01-01T00:00:00+00:00"})
        )

        assert record["expires_at"] == "2024-01-01T00:30:00+00:00"

    def test_json_encoded_columns(self, manager):
        """Columns stored as JSON strings decode too."""
        session = manager.dict_to_session({
            "id": "s1",
            "user_id": "user-1",
            "problem": '{"text": "3x = 9", "type": "linear_equation"}',
            "messages": '[{"id": "m1", "role": "tutor", "content": "Hi", "timestamp": 1.0}]',
            "context": '{"last_hint_level": 2}',
            "difficulty_mode": "bogus",
            "status": "completed",
            "started_at": "2024-01-01T00:00:00Z",
        })

        assert session.problem.text == "3x = 9"
        assert session.messages[0].role == Role.TUTOR
        assert session.last_hint_level == 2
        assert session.difficulty == DifficultyMode.MIDDLE
        assert session.status == SessionStatus.COMPLETED


class TestSupabaseSessionRepository:
    """Query shapes sent to the Supabase client."""

    @pytest.fixture
    def client(self):
        return MagicMock()

    def test_save_upserts_on_id(self, client):
        record = {"id": "s1", "user_id": "u1"}
        SupabaseSessionRepository(client).save(record)

        client.table.assert_called_with("sessions")
        client.table.return_value.upsert.assert_called_once_with(record, on_conflict="id")

    def test_load_filters_by_owner(self, client):
        query = client.table.return_value.select.return_value
        query.eq.return_value.eq.return_value.execute.return_value.data = [{"id": "s1"}]

        assert SupabaseSessionRepository(client).load("s1", "u1") == {"id": "s1"}
        query.eq.assert_called_with("id", "s1")
        query.eq.return_value.eq.assert_called_with("user_id", "u1")

    def test_load_missing(self, client):
        query = client.table.return_value.select.return_value
        query.eq.return_value.eq.return_value.execute.return_value.data = []

        assert SupabaseSessionRepository(client).load("s1", "u1") is None

    def test_delete(self, client):
        SupabaseSessionRepository(client).delete("s1", "u1")

        delete = client.table.return_value.delete.return_value
        delete.eq.assert_called_with("id", "s1")
        delete.eq.return_value.eq.return_value.execute.assert_called_once()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
