from __future__ import annotations

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable

from domain.errors import StoreError
from infrastructure.store.memory_store import InMemoryDocumentStore

logger = logging.getLogger(__name__)


def _json_default(obj: Any) -> Any:
    if isinstance(obj, datetime):
        return {"$datetime": obj.isoformat()}
    if isinstance(obj, date):
        return {"$date": obj.isoformat()}
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def _json_object_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1:
        if "$datetime" in obj:
            return datetime.fromisoformat(obj["$datetime"])
        if "$date" in obj:
            return date.fromisoformat(obj["$date"])
    return obj


class JsonFileDocumentStore(InMemoryDocumentStore):
    """In-memory store whose committed state survives restarts in a JSON file."""

    name = "json"

    def __init__(
        self,
        path: str | Path,
        clock: Callable[[], datetime] | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        super().__init__(clock=clock, id_factory=id_factory)
        self._path = Path(path)
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> None:
        if not self._path.exists():
            logger.info("JSON store starting empty path=%s", self._path)
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"), object_hook=_json_object_hook)
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreError(f"Unable to read store file {self._path}: {exc}") from exc

        if not isinstance(payload, dict):
            raise StoreError(f"Expected object at top of store file {self._path}, got {type(payload).__name__}")
        self._collections = payload.get("collections") or {}
        self._issued_ids = set(payload.get("issued_ids") or [])
        for docs in self._collections.values():
            self._issued_ids.update(docs.keys())
        logger.info("JSON store loaded path=%s collections=%d", self._path, len(self._collections))

    def _after_commit(self) -> None:
        payload = {"collections": self._collections, "issued_ids": sorted(self._issued_ids)}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=_json_default), encoding="utf-8")
        tmp.replace(self._path)
