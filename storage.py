import json
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from node_models import Difficulty, NodeState, TreeNode
from sessions import Session, SessionStatus


STORAGE_KEY = "promindmap_v1_single"
_DEFAULT_HOME = Path.home() / ".promindmap"
_configured_log = os.getenv("PROMINDMAP_LOG")
_STORAGE_LOG_PATH: Optional[Path] = Path(_configured_log).expanduser() if _configured_log else None
_storage_log_lock = threading.Lock()


def get_data_dir() -> Path:
    configured = os.getenv("PROMINDMAP_HOME")
    return Path(configured).expanduser() if configured else _DEFAULT_HOME


def _log_storage_event(status: str, key: str, detail: str | None = None) -> None:
    timestamp = datetime.now().isoformat(timespec="seconds")
    message = detail.strip() if detail else ""
    line = f"{timestamp}\t{status.upper()}\t{key}"
    if message:
        line = f"{line}\t{message}"
    log_path = _STORAGE_LOG_PATH or get_data_dir() / "storage.log"
    with _storage_log_lock:
        # Best effort: a missing or unwritable log never fails storage.
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a", encoding="utf-8") as log:
                log.write(line + "\n")
        except OSError:
            pass


class MemoryBlobStore:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._blobs: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._blobs.get(key)

    def set(self, key: str, value: str) -> None:
        self._blobs[key] = value


class FileBlobStore:
    """Key-value blobs kept as ``<directory>/<key>.json`` files."""

    def __init__(self, directory: Path | str | None = None) -> None:
        self.directory = Path(directory).expanduser() if directory else get_data_dir()

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        self._path(key).write_text(value, encoding="utf-8")


def tree_to_dict(node: TreeNode) -> Dict[str, Any]:
    return {
        "id": node.id,
        "text": node.text,
        "children": [tree_to_dict(child) for child in node.children],
        "isLeaf": node.is_leaf,
        "level": node.level,
    }


def tree_from_dict(data: Dict[str, Any]) -> TreeNode:
    children = tuple(tree_from_dict(child) for child in data.get("children", []))
    # isLeaf is derived from the children actually present, not trusted.
    return TreeNode(
        id=str(data["id"]),
        text=str(data["text"]),
        children=children,
        is_leaf=not children,
        level=int(data["level"]),
    )


def _state_to_dict(state: NodeState) -> Dict[str, Any]:
    return {
        "isSolved": state.is_solved,
        "isStarred": state.is_starred,
        "isCollapsed": state.is_collapsed,
        "hintCount": state.hint_count,
    }


def _state_from_dict(data: Dict[str, Any]) -> NodeState:
    return NodeState(
        is_solved=bool(data.get("isSolved", False)),
        is_starred=bool(data.get("isStarred", False)),
        is_collapsed=bool(data.get("isCollapsed", False)),
        hint_count=int(data.get("hintCount", 0)),
    )


def session_to_dict(session: Session) -> Dict[str, Any]:
    return {
        "id": session.id,
        "fileName": session.file_name,
        "data": tree_to_dict(session.data),
        "difficulty": int(session.difficulty),
        "nodeStates": {
            node_id: _state_to_dict(state)
            for node_id, state in session.node_states.items()
        },
        "lastUpdated": session.last_updated,
        "progress": session.progress,
    }


def session_from_dict(data: Dict[str, Any]) -> Session:
    states = data.get("nodeStates") or {}
    if not isinstance(states, dict):
        raise TypeError("nodeStates must be an object")
    return Session(
        id=str(data["id"]),
        file_name=str(data["fileName"]),
        data=tree_from_dict(data["data"]),
        difficulty=Difficulty.coerce(data["difficulty"]),
        node_states={
            str(node_id): _state_from_dict(state) for node_id, state in states.items()
        },
        last_updated=int(data.get("lastUpdated", 0)),
        progress=int(data.get("progress", 0)),
        status=SessionStatus.PERSISTED,
    )


class SessionRepository:
    """Whole-collection persistence for sessions, most recent first."""

    def __init__(self, blob_store, key: str = STORAGE_KEY) -> None:
        self._blob_store = blob_store
        self.key = key

    def load_all(self) -> List[Session]:
        sessions = self._read()
        return sessions if sessions is not None else []

    def _read(self) -> Optional[List[Session]]:
        """Stored sessions, or ``None`` when the blob could not be read."""
        try:
            raw = self._blob_store.get(self.key)
        except (OSError, UnicodeDecodeError) as exc:
            _log_storage_event("FAIL", self.key, f"read error: {exc}")
            return None
        if not raw:
            return []
        try:
            payload = json.loads(raw)
            if not isinstance(payload, list):
                raise TypeError("stored sessions must be a list")
            sessions = [session_from_dict(item) for item in payload]
        except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as exc:
            _log_storage_event("FAIL", self.key, f"corrupt session blob: {exc}")
            return None
        _log_storage_event("LOAD", self.key, f"{len(sessions)} sessions")
        return sessions

    def save_all(self, sessions: List[Session]) -> None:
        payload = [session_to_dict(session) for session in sessions]
        self._blob_store.set(self.key, json.dumps(payload, ensure_ascii=False))
        _log_storage_event("SAVE", self.key, f"{len(sessions)} sessions")

    def delete(self, session_id: str) -> List[Session]:
        """Remove one session; an unreadable collection is left untouched."""
        stored = self._read()
        if stored is None:
            return []
        remaining = [s for s in stored if s.id != session_id]
        self.save_all(remaining)
        return remaining
