from __future__ import annotations

import asyncio
import copy
import json
import os
import threading
import uuid
from pathlib import Path
from typing import Any, Protocol


class KeyValueStore(Protocol):
    """Shared key/value map with best-effort, per-key read-modify-write.

    There is no cross-key atomicity. Values are JSON-compatible.
    """

    async def get(self, key: str) -> Any | None: ...

    async def put(self, key: str, value: Any) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self, prefix: str = "") -> list[str]: ...


class MemoryKeyValueStore:
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(initial or {})

    async def get(self, key: str) -> Any | None:
        # Hand out copies so callers cannot mutate stored state without a put().
        return copy.deepcopy(self._data.get(key))

    async def put(self, key: str, value: Any) -> None:
        # Round-trip through JSON so the fake rejects what a real store would.
        self._data[key] = json.loads(json.dumps(value))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    def snapshot(self) -> dict[str, Any]:
        return copy.deepcopy(self._data)


class JsonFileKeyValueStore:
    """All keys in one JSON document, rewritten atomically on every put.

    Concurrent writers from separate processes may lose each other's update to a
    different key; the file itself is always a complete JSON document.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        # Serializes read-modify-write across worker threads of this process.
        self._lock = threading.Lock()

    def _load(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    def _write_atomic(self, payload: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f"{self.path.name}.{os.getpid()}.{uuid.uuid4().hex[:8]}.tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)

    def _put(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._load()
            data[key] = value
            self._write_atomic(data)

    def _delete(self, key: str) -> None:
        with self._lock:
            data = self._load()
            if key in data:
                del data[key]
                self._write_atomic(data)

    # Disk I/O runs off the event loop.

    async def get(self, key: str) -> Any | None:
        data = await asyncio.to_thread(self._load)
        return data.get(key)

    async def put(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._put, key, value)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def keys(self, prefix: str = "") -> list[str]:
        data = await asyncio.to_thread(self._load)
        return sorted(k for k in data if k.startswith(prefix))
