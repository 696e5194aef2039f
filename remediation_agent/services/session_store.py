# remediation_agent/services/session_store.py
import logging
import os
import re
import secrets
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone

from pydantic import ValidationError as PydanticValidationError

from remediation_agent.core.exceptions import SessionNotFoundError, SessionStorageError, ValidationError
from remediation_agent.models.session import Session

logger = logging.getLogger(__name__)

SESSION_ID_PATTERN = re.compile(r"^rem_[0-9A-Za-z]+_[0-9a-f]+$")


def generate_session_id() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    return f"rem_{timestamp}_{secrets.token_hex(8)}" # e.g. rem_20240301T101500_9f2c41d07be83a15


class SessionStore(ABC):
    """Durable key -> Session record store."""

    @abstractmethod
    def save(self, session: Session) -> None:
        ...

    @abstractmethod
    def load(self, session_id: str) -> Session:
        ...

    @abstractmethod
    def exists(self, session_id: str) -> bool:
        ...


class FileSessionStore(SessionStore):
    """
    One ``<session_id>.json`` file per session.

    Writes go to a temporary file in the same directory which is then renamed
    over the target, so a concurrent reader sees either the previous record or
    the new one, never a partial write.
    """

    def __init__(self, session_dir: str):
        self.session_dir = session_dir
        try:
            os.makedirs(session_dir, exist_ok=True)
        except OSError as e:
            raise SessionStorageError(f"Session directory is not usable: {session_dir} ({e})") from e
        if not os.access(session_dir, os.W_OK):
            raise SessionStorageError(f"Session directory is not writable: {session_dir}")
        logger.info(f"Session store ready at {os.path.abspath(session_dir)}")

    def _path(self, session_id: str) -> str:
        if not SESSION_ID_PATTERN.match(session_id or ""):
            raise ValidationError(f"Invalid session id: {session_id!r}")
        return os.path.join(self.session_dir, f"{session_id}.json")

    def exists(self, session_id: str) -> bool:
        return os.path.exists(self._path(session_id))

    def save(self, session: Session) -> None:
        path = self._path(session.session_id)
        session.updated = datetime.now(timezone.utc)
        payload = session.model_dump_json(by_alias=True, indent=2)

        fd, tmp_path = tempfile.mkstemp(prefix=f".{session.session_id}.", suffix=".tmp", dir=self.session_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno()) # Data on disk before the rename
            os.replace(tmp_path, path)
        except OSError as e:
            logger.error(f"Failed to persist session {session.session_id}: {e}", exc_info=True)
            if os.path.exists(tmp_path):
                os.unlink(tmp_path) # Don't leave temp files behind
            raise SessionStorageError(f"Failed to persist session {session.session_id}: {e}") from e
        logger.debug(f"Persisted session {session.session_id} ({len(session.iterations)} iterations, status={session.status}).")

    def load(self, session_id: str) -> Session:
        path = self._path(session_id)
        if not os.path.exists(path):
            raise SessionNotFoundError(session_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return Session.model_validate_json(f.read())
        except OSError as e:
            raise SessionStorageError(f"Failed to read session {session_id}: {e}") from e
        except PydanticValidationError as e:
            logger.error(f"Session file {path} is corrupt: {e}")
            raise SessionStorageError(f"Session {session_id} is corrupt and cannot be loaded") from e
