"""
Session stores.

A SessionStore is the per-user host store that owns Session records. The
gateway reads from it before each execution; only the TokenLifecycleManager
writes to it.
"""
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from codegate.types import Session

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    @abstractmethod
    def get(self, account_id: str) -> Optional[Session]:
        """Return the session for an account, or None if not connected."""
        pass

    @abstractmethod
    def save(self, session: Session) -> None:
        """Persist a session, replacing any record for the same account."""
        pass

    @abstractmethod
    def delete(self, account_id: str) -> bool:
        """Forget an account (disconnect). Returns True if it existed."""
        pass

    @abstractmethod
    def account_ids(self) -> List[str]:
        """Connected account ids, in connection order."""
        pass


class InMemorySessionStore(SessionStore):
    def __init__(self, sessions: Optional[List[Session]] = None):
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        for session in sessions or []:
            self._sessions[session.account_id] = session

    def get(self, account_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(account_id)

    def save(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.account_id] = session

    def delete(self, account_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(account_id, None) is not None

    def account_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)


class JsonFileSessionStore(SessionStore):
    """Sessions kept in a JSON file: {"sessions": [<Session.to_dict()>, ...]}.

    The file holds secrets, so it is written with 0600 permissions.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, Session]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text())
        sessions = [Session.from_dict(item) for item in data.get("sessions", [])]
        return {s.account_id: s for s in sessions}

    def _write(self, sessions: Dict[str, Session]) -> None:
        payload = {"sessions": [s.to_dict() for s in sessions.values()]}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_path, self.path)

    def get(self, account_id: str) -> Optional[Session]:
        with self._lock:
            return self._read().get(account_id)

    def save(self, session: Session) -> None:
        with self._lock:
            sessions = self._read()
            sessions[session.account_id] = session
            self._write(sessions)
        logger.debug(f"Saved session for {session.account_id} to {self.path}")

    def delete(self, account_id: str) -> bool:
        with self._lock:
            sessions = self._read()
            if account_id not in sessions:
                return False
            del sessions[account_id]
            self._write(sessions)
            return True

    def account_ids(self) -> List[str]:
        with self._lock:
            return list(self._read())
