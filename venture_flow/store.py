"""Plan state stores: one aggregate snapshot per opportunity id."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .errors import PlanNotFoundError, StoreConflictError
from .schemas import PlanSnapshot

logger = logging.getLogger(__name__)


class PlanStore(Protocol):
    """Key-value persistence for aggregate plans.

    ``set`` only succeeds when ``expected_version`` matches the stored
    version (``None`` meaning the key must be absent). The stored snapshot's
    version is bumped by one on every successful write.
    """

    async def get(self, key: str) -> Optional[PlanSnapshot]: ...

    async def set(self, key: str, snapshot: PlanSnapshot, *, expected_version: Optional[int] = None) -> PlanSnapshot: ...

    async def delete(self, key: str) -> bool: ...

    async def keys(self) -> List[str]: ...


def _check_version(key: str, current: Optional[dict], expected_version: Optional[int]) -> int:
    actual = current.get("version") if current is not None else None
    if actual != expected_version:
        raise StoreConflictError(key, expected=expected_version, actual=actual)
    return 1 if actual is None else actual + 1


def _stamp(snapshot: PlanSnapshot, version: int) -> PlanSnapshot:
    return snapshot.model_copy(update={"version": version, "updated_at": datetime.now(timezone.utc)})


class InMemoryPlanStore:
    """Process-local store, mostly for tests and single-process deployments."""

    def __init__(self) -> None:
        self._store: Dict[str, dict] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[PlanSnapshot]:
        data = self._store.get(key)
        return PlanSnapshot.model_validate(data) if data is not None else None

    async def set(self, key: str, snapshot: PlanSnapshot, *, expected_version: Optional[int] = None) -> PlanSnapshot:
        async with self._lock:
            version = _check_version(key, self._store.get(key), expected_version)
            stored = _stamp(snapshot, version)
            self._store[key] = stored.to_payload()
        return stored

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._store.pop(key, None) is not None

    async def keys(self) -> List[str]:
        return sorted(self._store)


class JsonFilePlanStore:
    """Store every plan in one JSON document, replaced atomically on write."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> Dict[str, dict]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as handle:
            return json.load(handle)

    def _write_all(self, data: Dict[str, dict]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=self._path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def get(self, key: str) -> Optional[PlanSnapshot]:
        data = (await asyncio.to_thread(self._read_all)).get(key)
        return PlanSnapshot.model_validate(data) if data is not None else None

    async def set(self, key: str, snapshot: PlanSnapshot, *, expected_version: Optional[int] = None) -> PlanSnapshot:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            version = _check_version(key, data.get(key), expected_version)
            stored = _stamp(snapshot, version)
            data[key] = stored.to_payload()
            await asyncio.to_thread(self._write_all, data)
        logger.debug("Wrote plan %s (version %s) to %s", key, version, self._path)
        return stored

    async def delete(self, key: str) -> bool:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            if data.pop(key, None) is None:
                return False
            await asyncio.to_thread(self._write_all, data)
            return True

    async def keys(self) -> List[str]:
        return sorted(await asyncio.to_thread(self._read_all))


def create_store(path: Optional[str]) -> PlanStore:
    """Return a file-backed store when *path* is set, otherwise an in-memory one."""

    if path:
        return JsonFilePlanStore(path)
    return InMemoryPlanStore()


async def set_task_completed(store: PlanStore, key: str, task_id: str, completed: bool) -> PlanSnapshot:
    """Toggle one task's completion flag, the only edit allowed after generation."""

    snapshot = await store.get(key)
    if snapshot is None:
        raise PlanNotFoundError(f"No plan stored for '{key}'.")
    if snapshot.action_plan is None:
        raise PlanNotFoundError(f"Plan '{key}' has no action plan.")

    plan = snapshot.action_plan.model_copy(deep=True)
    matched = False
    for category in plan.categories:
        for task in category.tasks:
            if task.id == task_id:
                task.completed = completed
                matched = True
    if not matched:
        raise PlanNotFoundError(f"Plan '{key}' has no task '{task_id}'.")

    updated = snapshot.model_copy(update={"action_plan": plan})
    return await store.set(key, updated, expected_version=snapshot.version)
