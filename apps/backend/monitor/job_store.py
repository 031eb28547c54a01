"""
Durable "last started job" pointer used to resume polling after a restart.

Only one writer may exist per store at a time; readers must refetch the
job before trusting the stored id, since it may have expired upstream.
"""
import json
import logging
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

LAST_JOB_ID_KEY = "arachne:lastJobId"


class JobIdStore:
    """Key/value capability holding one job id under a well-known key."""

    def __init__(self, key: str = LAST_JOB_ID_KEY):
        self.key = key
        self._writer: Optional["JobIdWriter"] = None

    def get(self) -> Optional[str]:
        value = self._read()
        return value or None

    def claim(self) -> "JobIdWriter":
        """
        Hand out the single writer for this store.

        Raises:
            RuntimeError: another writer is still active
        """
        if self._writer is not None and not self._writer.released:
            raise RuntimeError(f"Job id store '{self.key}' already has an active writer")
        self._writer = JobIdWriter(self)
        return self._writer

    def _read(self) -> Optional[str]:
        raise NotImplementedError

    def _write(self, value: str):
        raise NotImplementedError

    def _delete(self):
        raise NotImplementedError


class JobIdWriter:
    """Write/clear handle returned by JobIdStore.claim()."""

    def __init__(self, store: JobIdStore):
        self._store = store
        self.released = False

    def set(self, job_id: str):
        self._check()
        self._store._write(job_id)

    def clear(self):
        self._check()
        self._store._delete()

    def release(self):
        self.released = True

    def _check(self):
        if self.released:
            raise RuntimeError("Job id writer was released")


class MemoryJobIdStore(JobIdStore):
    """Process-local store, used by tests and short-lived sessions."""

    def __init__(self, key: str = LAST_JOB_ID_KEY, initial: Optional[str] = None):
        super().__init__(key)
        self._value = initial

    def _read(self) -> Optional[str]:
        return self._value

    def _write(self, value: str):
        self._value = value

    def _delete(self):
        self._value = None


class FileJobIdStore(JobIdStore):
    """
    JSON file store shared with other keys in the same state file.

    Unreadable files are treated as empty rather than failing the tracker.
    """

    def __init__(self, path: Path, key: str = LAST_JOB_ID_KEY):
        super().__init__(key)
        self.path = Path(path)

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
            return data if isinstance(data, dict) else {}
        except (OSError, ValueError) as e:
            logger.warning(f"[job_store] Could not read {self.path}: {e}, starting fresh")
            return {}

    def _save(self, data: Dict[str, str]):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w") as f:
                json.dump(data, f, indent=2)
        except OSError as e:
            logger.error(f"[job_store] Could not write {self.path}: {e}")

    def _read(self) -> Optional[str]:
        value = self._load().get(self.key)
        return value if isinstance(value, str) else None

    def _write(self, value: str):
        data = self._load()
        data[self.key] = value
        self._save(data)

    def _delete(self):
        data = self._load()
        if self.key in data:
            del data[self.key]
            self._save(data)
