"""
Resume Position storage for the change stream consumer.

The in-memory store keeps the token for the life of the process; the file
store survives restarts so the consumer can continue exactly where it
stopped.
"""

import logging
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
from bson import json_util

logger = logging.getLogger(__name__)


class ResumeTokenStore(ABC):
    """Where the consumer keeps its Resume Position"""

    @abstractmethod
    async def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored token, or None to start from the current tail"""
        pass

    @abstractmethod
    async def save(self, token: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass


class InMemoryResumeTokenStore(ResumeTokenStore):
    """Token kept in process memory only"""

    def __init__(self, token: Optional[Dict[str, Any]] = None):
        self._token = token

    async def load(self) -> Optional[Dict[str, Any]]:
        return self._token

    async def save(self, token: Dict[str, Any]) -> None:
        self._token = token

    async def clear(self) -> None:
        self._token = None


class FileResumeTokenStore(ResumeTokenStore):
    """
    Token persisted as Extended JSON in a small file.

    Writes go to a temporary file in the same directory which then
    replaces the target, so a crash never leaves a half-written token.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    async def load(self) -> Optional[Dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            async with aiofiles.open(self.path, 'r', encoding='utf-8') as f:
                content = (await f.read()).strip()
            if not content:
                return None
            token = json_util.loads(content)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable resume token file {self.path}: {e}")
            return None
        if not isinstance(token, dict):
            logger.warning(f"Ignoring malformed resume token in {self.path}")
            return None
        return token

    async def save(self, token: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_name(f".{self.path.name}.tmp")
        try:
            async with aiofiles.open(temp_file, 'w', encoding='utf-8') as f:
                await f.write(json_util.dumps(token))
            os.replace(temp_file, self.path)
        except OSError:
            temp_file.unlink(missing_ok=True)
            raise

    async def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def create_resume_store(path: Optional[Path] = None) -> ResumeTokenStore:
    """File-backed store when a path is configured, in-memory otherwise"""
    if path is None:
        return InMemoryResumeTokenStore()
    logger.info(f"Persisting resume position to {path}")
    return FileResumeTokenStore(path)
