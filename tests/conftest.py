import itertools

import pytest

import storage


@pytest.fixture(autouse=True)
def storage_log(tmp_path, monkeypatch):
    """Keep storage log lines out of the working directory."""
    log_path = tmp_path / "storage.log"
    monkeypatch.setattr(storage, "_STORAGE_LOG_PATH", log_path)
    return log_path


@pytest.fixture
def counter_ids():
    counter = itertools.count(1)
    return lambda: f"n{next(counter)}"


def by_text(root):
    return {node.text: node for node in root.walk()}


class FlakyBlobStore(storage.MemoryBlobStore):
    """Memory store whose next ``get`` fails once when ``fail_next_read`` is set."""

    def __init__(self, initial=None):
        super().__init__(initial)
        self.fail_next_read = False

    def get(self, key):
        if self.fail_next_read:
            self.fail_next_read = False
            raise OSError("disk went away")
        return super().get(key)
