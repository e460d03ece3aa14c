"""
Unit tests for the session aggregate and its lifecycle.

Run: pytest tests/test_sessions.py -v
"""

import pytest

from node_models import Difficulty, NodeState
from sessions import (
    DEFAULT_FILE_NAME,
    DEMO_NAME,
    DEMO_OUTLINE,
    NoActiveSession,
    SessionManager,
    SessionStatus,
    create_session,
)
from storage import MemoryBlobStore, SessionRepository
from tests.conftest import FlakyBlobStore, by_text


SAMPLE = "A\n  B\n    C\n  D"


@pytest.fixture
def repository():
    return SessionRepository(MemoryBlobStore())


@pytest.fixture
def manager(repository):
    manager = SessionManager(repository)
    manager.load()
    return manager


class TestCreateSession:
    def test_new_session_defaults(self):
        session = create_session(SAMPLE, "notes.md", now=1234)

        assert session.status is SessionStatus.DRAFT
        assert session.file_name == "notes.md"
        assert session.difficulty is Difficulty.BASIC
        assert session.node_states == {}
        assert session.progress == 0
        assert session.last_updated == 1234
        assert session.data.text == "A"

    def test_blank_name_falls_back(self):
        assert create_session(SAMPLE, "  ").file_name == DEFAULT_FILE_NAME
        assert create_session(SAMPLE, None).file_name == DEFAULT_FILE_NAME

    def test_ids_differ(self):
        assert create_session(SAMPLE, "a").id != create_session(SAMPLE, "a").id


class TestSessionMutations:
    def test_node_update_recomputes_progress(self):
        session = create_session(SAMPLE, "x", now=0)
        c_id = by_text(session.data)["C"].id
        updated = session.with_node_update(c_id, is_solved=True)

        assert updated.progress == 50
        assert updated.status is SessionStatus.ACTIVE
        assert updated.last_updated > 0
        assert session.progress == 0
        assert session.node_states == {}

    def test_difficulty_change_recomputes_progress(self):
        session = create_session(SAMPLE, "x")
        nodes = by_text(session.data)
        session = session.with_node_update(nodes["C"].id, is_solved=True)
        assert session.progress == 50
        harder = session.with_difficulty(3)
        assert harder.difficulty is Difficulty.MASTER
        assert harder.progress == 33

    def test_invalid_difficulty(self):
        session = create_session(SAMPLE, "x")
        with pytest.raises(ValueError):
            session.with_difficulty(4)

    def test_reset_clears_states(self):
        session = create_session(SAMPLE, "x")
        for node in session.data.walk():
            session = session.with_node_update(node.id, is_solved=True, is_starred=True)
        assert session.progress == 100
        reset = session.with_reset()
        assert reset.node_states == {}
        assert reset.progress == 0

    def test_unknown_node_lookup(self):
        session = create_session(SAMPLE, "x")
        with pytest.raises(KeyError):
            session.node("missing")


class TestSessionManager:
    def test_upload_persists_and_activates(self, manager, repository):
        session = manager.upload(SAMPLE, "notes.md")

        assert manager.active is session
        assert session.status is SessionStatus.ACTIVE
        stored = repository.load_all()
        assert [s.id for s in stored] == [session.id]

    def test_uploads_are_most_recent_first(self, manager):
        first = manager.upload(SAMPLE, "first")
        second = manager.upload(SAMPLE, "second")
        assert [s.id for s in manager.sessions] == [second.id, first.id]

    def test_study_flow_and_save(self, manager, repository):
        session = manager.upload(SAMPLE, "notes.md")
        nodes = by_text(session.data)

        assert not manager.check_answer(nodes["C"].id, "nope")
        assert manager.active.node_states == {}
        assert manager.check_answer(nodes["C"].id, " c ")
        assert manager.active.progress == 50

        # Not written back until exit.
        assert repository.load_all()[0].progress == 0

        saved = manager.save_and_exit()
        assert saved.status is SessionStatus.PERSISTED
        assert manager.active is None
        stored = repository.load_all()[0]
        assert stored.progress == 50
        assert stored.node_states[nodes["C"].id].is_solved

    def test_reopen_uses_stored_snapshot(self, manager, repository):
        session = manager.upload(SAMPLE, "notes.md")
        c_id = by_text(session.data)["C"].id
        manager.update_node(c_id, is_starred=True)
        manager.save_and_exit()

        fresh = SessionManager(repository)
        fresh.load()
        reopened = fresh.open(session.id)
        assert reopened.status is SessionStatus.ACTIVE
        assert reopened.data == session.data
        assert reopened.state(c_id).is_starred

    def test_save_inserts_when_missing(self, manager, repository):
        session = manager.upload(SAMPLE, "gone")
        repository.save_all([])
        manager.sessions = []
        manager.save_and_exit()
        assert [s.id for s in repository.load_all()] == [session.id]

    def test_save_without_active_is_noop(self, manager):
        assert manager.save_and_exit() is None

    def test_hints_accumulate(self, manager):
        session = manager.upload(DEMO_OUTLINE, DEMO_NAME)
        node = by_text(session.data)["Behaviorism"]
        assert manager.request_hint(node.id) == "B"
        assert manager.request_hint(node.id) == "Beh"
        assert manager.request_hint(node.id) == "Behaviorism"
        assert manager.active.state(node.id).hint_count == 3

    def test_star_toggle_twice(self, manager):
        session = manager.upload(SAMPLE, "x")
        d_id = by_text(session.data)["D"].id
        manager.toggle_star(d_id)
        manager.toggle_star(d_id)
        assert manager.active.state(d_id).is_starred is False

    def test_toggle_collapse_ignores_leaves(self, manager):
        session = manager.upload(SAMPLE, "x")
        nodes = by_text(session.data)
        manager.toggle_collapse(nodes["D"].id)
        assert nodes["D"].id not in manager.active.node_states
        manager.toggle_collapse(nodes["B"].id)
        assert manager.active.state(nodes["B"].id).is_collapsed

    def test_global_expand_toggles_every_node(self, manager):
        session = manager.upload(SAMPLE, "x")
        manager.toggle_global_expand()
        assert all(manager.active.state(n.id).is_collapsed for n in session.data.walk())
        manager.toggle_global_expand()
        assert not any(manager.active.state(n.id).is_collapsed for n in session.data.walk())

    def test_difficulty_and_reset(self, manager):
        session = manager.upload(SAMPLE, "x")
        nodes = by_text(session.data)
        manager.check_answer(nodes["D"].id, "d")
        manager.set_difficulty(Difficulty.MASTER)
        assert manager.active.progress == 33
        manager.reset_progress()
        assert manager.active.node_states == {}
        assert manager.active.progress == 0
        assert manager.active.difficulty is Difficulty.MASTER

    def test_delete_active_clears_pointer(self, manager, repository):
        keep = manager.upload(SAMPLE, "keep")
        manager.save_and_exit()
        doomed = manager.upload(SAMPLE, "doomed")

        assert manager.delete(doomed.id)
        assert manager.active is None
        assert [s.id for s in manager.sessions] == [keep.id]
        assert [s.id for s in repository.load_all()] == [keep.id]

    def test_delete_works_from_memory_when_storage_is_unreadable(self):
        """Deleting never re-reads storage, so a failing read cannot wipe it."""
        blobs = FlakyBlobStore()
        repository = SessionRepository(blobs)
        manager = SessionManager(repository)
        manager.load()
        keep = manager.upload(SAMPLE, "keep")
        manager.save_and_exit()
        doomed = manager.upload(SAMPLE, "doomed")
        manager.save_and_exit()

        blobs.fail_next_read = True
        assert manager.delete(doomed.id)
        assert [s.id for s in manager.sessions] == [keep.id]
        # The armed failure was never consumed.
        assert blobs.fail_next_read
        blobs.fail_next_read = False
        assert [s.id for s in repository.load_all()] == [keep.id]

    def test_delete_unknown_id(self, manager):
        manager.upload(SAMPLE, "x")
        assert manager.delete("missing") is False
        assert len(manager.sessions) == 1

    def test_operations_need_an_active_session(self, manager):
        with pytest.raises(NoActiveSession):
            manager.toggle_star("anything")
        with pytest.raises(NoActiveSession):
            manager.reset_progress()

    def test_open_unknown_session(self, manager):
        with pytest.raises(KeyError):
            manager.open("missing")

    def test_stale_solved_entry_counts(self, manager):
        session = manager.upload(SAMPLE, "x")
        manager.update_node("orphan", is_solved=True)
        assert manager.active.progress == 50
        assert manager.active.state("orphan") == NodeState(is_solved=True)
        assert session.progress == 0
