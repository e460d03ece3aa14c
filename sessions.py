"""Study sessions: one parsed outline plus its difficulty and recall state.

``Session`` objects are never edited in place. Every mutation returns a new
``Session`` with ``progress`` recomputed, and ``SessionManager`` swaps it in
as the active session. The manager talks to storage only through the
repository it is given (``load_all`` / ``save_all``).
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Protocol, Union

from md_io import parse_outline
from node_models import Difficulty, NodeState, TreeNode
from progress import compute_progress
import recall


DEFAULT_FILE_NAME = "New Mind Map"

DEMO_NAME = "Demo: English Theory"
DEMO_OUTLINE = """English Education Theory
  Theories
    Behaviorism
      Stimulus
      Response
    Cognitivism
      Schema
      Memory
  Methods
    GTM
      Grammar
      Translation
    CLT
      Interaction
      Fluency"""


class SessionStatus(Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PERSISTED = "persisted"
    DELETED = "deleted"


class NoActiveSession(RuntimeError):
    """Raised when a study operation runs without an open session."""


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Session:
    id: str
    file_name: str
    data: TreeNode
    difficulty: Difficulty = Difficulty.BASIC
    node_states: Dict[str, NodeState] = field(default_factory=dict)
    last_updated: int = 0
    progress: int = 0
    # Runtime lifecycle marker; never written to storage.
    status: SessionStatus = field(default=SessionStatus.DRAFT, compare=False)

    def _recomputed(self, **changes) -> "Session":
        changes.setdefault("last_updated", _now_ms())
        updated = replace(self, **changes)
        score = compute_progress(
            updated.data, updated.difficulty, updated.node_states
        )
        return replace(updated, progress=score, status=SessionStatus.ACTIVE)

    def with_node_states(self, node_states: Dict[str, NodeState]) -> "Session":
        return self._recomputed(node_states=dict(node_states))

    def with_node_update(self, node_id: str, **changes) -> "Session":
        return self.with_node_states(
            recall.apply_update(self.node_states, node_id, **changes)
        )

    def with_reset(self) -> "Session":
        return self.with_node_states(recall.reset_states())

    def with_difficulty(self, level: Union[Difficulty, int]) -> "Session":
        return self._recomputed(difficulty=Difficulty.coerce(level))

    def with_all_collapsed(self, collapsed: bool) -> "Session":
        return self.with_node_states(
            recall.set_all_collapsed(self.node_states, self.data, collapsed)
        )

    def with_status(self, status: SessionStatus) -> "Session":
        return replace(self, status=status)

    def node(self, node_id: str) -> TreeNode:
        found = self.data.find(node_id)
        if found is None:
            raise KeyError(f"unknown node id {node_id!r}")
        return found

    def state(self, node_id: str) -> NodeState:
        return recall.get_state(self.node_states, node_id)


def create_session(
    text: str, file_name: Optional[str], *, now: Optional[int] = None
) -> Session:
    """Parse ``text`` and wrap it in a fresh draft session."""
    timestamp = _now_ms() if now is None else now
    return Session(
        id=uuid.uuid4().hex,
        file_name=(file_name or "").strip() or DEFAULT_FILE_NAME,
        data=parse_outline(text),
        difficulty=Difficulty.BASIC,
        node_states={},
        last_updated=timestamp,
        progress=0,
        status=SessionStatus.DRAFT,
    )


class SessionRepositoryLike(Protocol):
    def load_all(self) -> List[Session]: ...

    def save_all(self, sessions: List[Session]) -> None: ...


class SessionManager:
    """Owns the session collection and the currently open session."""

    def __init__(self, repository: SessionRepositoryLike) -> None:
        self._repository = repository
        self.sessions: List[Session] = []
        self.active: Optional[Session] = None

    def load(self) -> List[Session]:
        self.sessions = [
            session.with_status(SessionStatus.PERSISTED)
            for session in self._repository.load_all()
        ]
        return self.sessions

    def _persist(self, sessions: List[Session]) -> None:
        self._repository.save_all(sessions)
        self.sessions = sessions

    def get(self, session_id: str) -> Session:
        for session in self.sessions:
            if session.id == session_id:
                return session
        raise KeyError(f"unknown session id {session_id!r}")

    def require_active(self) -> Session:
        if self.active is None:
            raise NoActiveSession("no session is open")
        return self.active

    # Lifecycle -----------------------------------------------------------

    def upload(self, text: str, file_name: Optional[str]) -> Session:
        draft = create_session(text, file_name)
        self._persist([draft.with_status(SessionStatus.PERSISTED), *self.sessions])
        self.active = draft.with_status(SessionStatus.ACTIVE)
        return self.active

    def open(self, session_id: str) -> Session:
        self.active = self.get(session_id).with_status(SessionStatus.ACTIVE)
        return self.active

    def save_and_exit(self) -> Optional[Session]:
        session = self.active
        if session is None:
            return None
        stored = session.with_status(SessionStatus.PERSISTED)
        if any(existing.id == stored.id for existing in self.sessions):
            updated = [
                stored if existing.id == stored.id else existing
                for existing in self.sessions
            ]
        else:
            updated = [stored, *self.sessions]
        self._persist(updated)
        self.active = None
        return stored

    def delete(self, session_id: str) -> bool:
        remaining = [s for s in self.sessions if s.id != session_id]
        removed = len(remaining) != len(self.sessions)
        if removed:
            self._persist(remaining)
        if self.active is not None and self.active.id == session_id:
            self.active = None
        return removed

    # Study interactions --------------------------------------------------

    def _replace_active(self, session: Session) -> Session:
        self.active = session
        return session

    def update_node(self, node_id: str, **changes) -> Session:
        session = self.require_active()
        return self._replace_active(session.with_node_update(node_id, **changes))

    def check_answer(self, node_id: str, guess: str) -> bool:
        session = self.require_active()
        store, matched = recall.check_answer(
            session.node_states, session.node(node_id), guess
        )
        if matched:
            self._replace_active(session.with_node_states(store))
        return matched

    def request_hint(self, node_id: str) -> str:
        """Count one more hint for the node and return the revealed prefix."""
        session = self.require_active()
        node = session.node(node_id)
        updated = self._replace_active(
            session.with_node_states(recall.request_hint(session.node_states, node_id))
        )
        return recall.hint_text(node.text, updated.state(node_id).hint_count)

    def toggle_star(self, node_id: str) -> Session:
        session = self.require_active()
        return self._replace_active(
            session.with_node_states(recall.toggle_star(session.node_states, node_id))
        )

    def toggle_collapse(self, node_id: str) -> Session:
        session = self.require_active()
        store = recall.toggle_collapse(session.node_states, session.node(node_id))
        return self._replace_active(session.with_node_states(store))

    def set_difficulty(self, level: Union[Difficulty, int]) -> Session:
        session = self.require_active()
        return self._replace_active(session.with_difficulty(level))

    def toggle_global_expand(self) -> Session:
        """Collapse everything if the root is expanded, otherwise expand all."""
        session = self.require_active()
        collapse = not session.state(session.data.id).is_collapsed
        return self._replace_active(session.with_all_collapsed(collapse))

    def reset_progress(self) -> Session:
        session = self.require_active()
        return self._replace_active(session.with_reset())
