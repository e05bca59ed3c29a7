"""
NoteBuddy Client - Durable Key-Value Storage
=============================================

What:  Small async key-value stores used to persist session material.
How:   `JsonFileStore` keeps one JSON object on disk and rewrites it atomically
       (write temp file, then replace). `MemoryStore` keeps the same contract
       in a dict for tests and for environments without a writable home.
Who:   CredentialStore.
When:  Read once at startup, written on login, activity and logout.

Failure Model:
    Stores raise OSError (or ValueError for a corrupt file). Callers decide
    whether that is fatal; the credential store treats it as "start
    unauthenticated".
"""

import asyncio
import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Async string-to-string storage with multi-key writes."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    async def set_many(self, values: Mapping[str, str]) -> None:
        """Write several keys in one step."""
        ...

    @abstractmethod
    async def delete_many(self, keys: Iterable[str]) -> None:
        """Remove several keys in one step. Missing keys are ignored."""
        ...


class MemoryStore(KeyValueStore):
    """In-process store; contents vanish with the process."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set_many(self, values: Mapping[str, str]) -> None:
        self.data.update(values)

    async def delete_many(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.data.pop(key, None)


class JsonFileStore(KeyValueStore):
    """
    Single JSON file on disk.

    Layout:
        {"identity": "...", "credentials": "...", "issued_at": "...", ...}

    Every mutation rewrites the whole file through a temp file followed by
    os.replace, so readers never observe a half-written document and a
    multi-key delete is all-or-nothing. Mutations are read-modify-write and
    hold `_lock` for the whole cycle, so concurrent writers never lose or
    resurrect each other's keys.
    """

    def __init__(self, path: str):
        self.path = Path(path).expanduser()
        self._lock = asyncio.Lock()

    async def _read_all(self) -> Dict[str, str]:
        if not await aiofiles.os.path.exists(self.path):
            return {}
        async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
            raw = await f.read()
        if not raw.strip():
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    async def _write_all(self, data: Mapping[str, str]) -> None:
        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(dict(data), indent=2, sort_keys=True))
            await aiofiles.os.replace(tmp_path, self.path)
        except OSError:
            if await aiofiles.os.path.exists(tmp_path):
                await aiofiles.os.remove(tmp_path)
            raise
        # Session material: owner read/write only
        try:
            os.chmod(self.path, 0o600)
        except OSError as e:
            logger.debug("Could not restrict permissions on %s: %s", self.path, e)

    async def get(self, key: str) -> Optional[str]:
        return (await self._read_all()).get(key)

    async def set_many(self, values: Mapping[str, str]) -> None:
        async with self._lock:
            data = await self._read_all()
            data.update(values)
            await self._write_all(data)

    async def delete_many(self, keys: Iterable[str]) -> None:
        doomed = set(keys)
        async with self._lock:
            try:
                data = await self._read_all()
            except ValueError:
                logger.warning("Discarding unreadable store file %s", self.path)
                data = {}
            remaining = {k: v for k, v in data.items() if k not in doomed}
            if not remaining:
                if await aiofiles.os.path.exists(self.path):
                    await aiofiles.os.remove(self.path)
                return
            await self._write_all(remaining)
