"""JSON snapshot files for the in-memory store.

Usage:
    save_snapshot(store, "data/labflow.json")
    store = load_snapshot("data/labflow.json")
"""

from __future__ import annotations

import logging
from pathlib import Path

from labflow.identifiers import Clock, utc_now
from labflow.store import EntityStore, StoreSnapshot

logger = logging.getLogger(__name__)


def save_snapshot(store: EntityStore, path: str | Path) -> Path:
    """Write the store to ``path``; the file is replaced atomically."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_suffix(target.suffix + ".tmp")
    tmp.write_text(store.snapshot().model_dump_json(indent=2), encoding="utf-8")
    tmp.replace(target)
    logger.info("Store snapshot saved: %s", target)
    return target


def load_snapshot(
    path: str | Path,
    limit: int | None = None,
    clock: Clock = utc_now,
    fixed_year: int | None = None,
) -> EntityStore:
    """Rebuild a store from a snapshot file.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        pydantic.ValidationError: If the file is not a valid snapshot.
    """
    source = Path(path)
    snapshot = StoreSnapshot.model_validate_json(source.read_text(encoding="utf-8"))
    logger.info("Store snapshot loaded: %s", source)
    return EntityStore.from_snapshot(snapshot, limit=limit, clock=clock, fixed_year=fixed_year)
