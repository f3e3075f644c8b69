"""
Crash-safe persistence of the change feed resume token.

Two backends share the same protocol:
- FileCheckpointStore: a single ASCII token in a file, replaced atomically
  (write temp file, fsync, os.replace) so a crash mid-save leaves either
  the old token or the new one, never a torn value
- DatabaseCheckpointStore: one row per stream in ``sync_checkpoints``;
  the transaction commit is the atomicity boundary

``load`` returns None when nothing has been saved yet. ``save`` raises
CheckpointError on any failure; the flusher relies on that to keep the
batch pending.
"""

import asyncio
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from core.config import Settings
from core.exceptions import CheckpointError, ConfigurationError
from models.checkpoint import SyncCheckpoint
import logging

logger = logging.getLogger(__name__)


class CheckpointStore(Protocol):
    """Protocol for resume token persistence"""
    
    async def load(self) -> Optional[str]:
        """Last saved token, or None if none exists yet"""
        ...
    
    async def save(self, token: str) -> None:
        """Durably replace the saved token"""
        ...
    
    async def close(self) -> None:
        ...


class FileCheckpointStore:
    """Resume token kept in a local file"""
    
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._temp_path = self.path.with_name(f".{self.path.name}.tmp")
    
    def _read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        token = self.path.read_text(encoding="ascii").strip()
        return token or None
    
    def _write(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self._temp_path, "w", encoding="ascii") as f:
                f.write(token)
                f.flush()
                os.fsync(f.fileno())
            os.replace(self._temp_path, self.path)
        except BaseException:
            self._temp_path.unlink(missing_ok=True)
            raise
    
    async def load(self) -> Optional[str]:
        try:
            token = await asyncio.to_thread(self._read)
        except (OSError, UnicodeDecodeError) as e:
            raise CheckpointError(
                "Failed to read resume token",
                context={"backend": "file", "location": str(self.path), "operation": "load"},
                original_exception=e
            )
        
        if token is None:
            logger.info(f"No resume token at {self.path}, continuing without resume token")
        else:
            logger.info(f"Continuing with resume token: {token}")
        return token
    
    async def save(self, token: str) -> None:
        try:
            await asyncio.to_thread(self._write, token)
        except (OSError, UnicodeEncodeError) as e:
            raise CheckpointError(
                "Failed to persist resume token",
                context={
                    "backend": "file",
                    "location": str(self.path),
                    "checkpoint_value": token,
                    "operation": "save"
                },
                original_exception=e
            )
    
    async def close(self) -> None:
        pass


class DatabaseCheckpointStore:
    """Resume token kept in the ``sync_checkpoints`` table"""
    
    def __init__(self, session_factory: async_sessionmaker, stream_name: str):
        self.session_factory = session_factory
        self.stream_name = stream_name
    
    async def load(self) -> Optional[str]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(SyncCheckpoint.checkpoint_value).where(
                        SyncCheckpoint.stream_name == self.stream_name
                    )
                )
                token = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Failed to read checkpoint",
                context={"backend": "database", "location": self.stream_name, "operation": "load"},
                original_exception=e
            )
        
        if token is None:
            logger.info(f"No checkpoint for stream {self.stream_name}, continuing without resume token")
        else:
            logger.info(f"Continuing with resume token: {token}")
        return token
    
    async def save(self, token: str) -> None:
        now = datetime.now(timezone.utc)
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(SyncCheckpoint).where(SyncCheckpoint.stream_name == self.stream_name)
                )
                checkpoint = result.scalar_one_or_none()
                
                if checkpoint is None:
                    checkpoint = SyncCheckpoint(
                        stream_name=self.stream_name,
                        checkpoint_value=token,
                        last_saved_at=now,
                        total_saves=1
                    )
                    session.add(checkpoint)
                else:
                    checkpoint.checkpoint_value = token
                    checkpoint.last_saved_at = now
                    checkpoint.total_saves = (checkpoint.total_saves or 0) + 1
                
                await session.commit()
        except SQLAlchemyError as e:
            raise CheckpointError(
                "Failed to persist checkpoint",
                context={
                    "backend": "database",
                    "location": self.stream_name,
                    "checkpoint_value": token,
                    "operation": "save"
                },
                original_exception=e
            )
    
    async def close(self) -> None:
        pass


def create_checkpoint_store(
    settings: Settings,
    session_factory: Optional[async_sessionmaker] = None
) -> CheckpointStore:
    """Checkpoint backend selected by CHECKPOINT_BACKEND"""
    backend = settings.CHECKPOINT_BACKEND.lower()
    if backend == "file":
        return FileCheckpointStore(settings.CHECKPOINT_PATH)
    if backend == "database":
        if session_factory is None:
            raise ConfigurationError(
                "Database checkpoint backend needs a sink session factory",
                context={"backend": backend}
            )
        return DatabaseCheckpointStore(session_factory, settings.CHECKPOINT_STREAM)
    raise ConfigurationError(
        f"Unknown checkpoint backend: {settings.CHECKPOINT_BACKEND}",
        context={"backend": backend}
    )
