"""Profile persistence: one JSON document per person name.

Writes go to a temporary file in the same directory and are swapped in
with ``os.replace``, so readers never observe a partially written profile.
Callers serialize enroll/verify work on a single name with ``locked(name)``.
The set of registered names is indexed in memory when the store opens, so
the directory is assumed to be owned by one store instance.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from facevault.errors import ProfileStoreError, ValidationError
from facevault.identity.profile import PersonProfile
from facevault.ml.vectors import NormalizedEmbedding

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from contextlib import AbstractAsyncContextManager

logger = logging.getLogger(__name__)

_NAME_PATTERN = re.compile(r"^\w[\w .-]{0,63}$")


def validate_name(name: str | None) -> str:
    """Return the stripped person name, or raise if it cannot be used as a store key.

    Raises:
        ValidationError: If the name is missing, blank, too long, contains
            characters other than letters, digits, space, ``_``, ``-``, ``.``,
            or does not start with a letter, digit or ``_``.
    """
    if name is None or not name.strip():
        raise ValidationError("Name is required")
    cleaned = name.strip()
    if not _NAME_PATTERN.fullmatch(cleaned):
        raise ValidationError(f"Invalid name: {cleaned!r}")
    return cleaned


class ProfileStore(Protocol):
    """Protocol for keyed profile persistence."""

    def get(self, name: str) -> PersonProfile | None:
        """Return the stored profile, or None if the name is not registered."""
        ...

    def put(self, name: str, profile: PersonProfile) -> None:
        """Store ``profile`` under ``name``, replacing any previous profile."""
        ...

    def delete(self, name: str) -> bool:
        """Remove a profile. Returns False if none was stored."""
        ...

    def names(self) -> list[str]:
        """Return all registered names, sorted."""
        ...

    def count(self) -> int:
        """Return the number of registered names."""
        ...

    def locked(self, name: str) -> AbstractAsyncContextManager[None]:
        """Async context manager that serializes work on a single name."""
        ...


class _ProfileRecord(BaseModel):
    """On-disk JSON layout of a profile."""

    model_config = ConfigDict(populate_by_name=True, ser_json_inf_nan="constants")

    embeddings: list[list[float]]
    centroid: list[float]
    max_intra_distance: float = Field(alias="maxIntraDistance")
    min_intra_similarity: float = Field(alias="minIntraSimilarity")

    @classmethod
    def from_profile(cls, profile: PersonProfile) -> _ProfileRecord:
        return cls(
            embeddings=[embedding.tolist() for embedding in profile.embeddings],
            centroid=profile.centroid.tolist(),
            max_intra_distance=profile.max_intra_distance,
            min_intra_similarity=profile.min_intra_similarity,
        )

    def to_profile(self) -> PersonProfile:
        return PersonProfile(
            embeddings=tuple(NormalizedEmbedding(np.asarray(e, dtype=np.float32)) for e in self.embeddings),
            centroid=NormalizedEmbedding(np.asarray(self.centroid, dtype=np.float32)),
            max_intra_distance=self.max_intra_distance,
            min_intra_similarity=self.min_intra_similarity,
        )


class _KeyedLocks:
    """asyncio locks created on demand and dropped once no task holds or awaits them."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class JsonProfileStore:
    """Stores each profile as ``<profiles_dir>/<name>.json``."""

    def __init__(self, profiles_dir: str | Path) -> None:
        self._dir = Path(profiles_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._locks = _KeyedLocks()
        self._names = {p.stem for p in self._dir.glob("*.json") if not p.name.startswith(".")}

    def locked(self, name: str) -> AbstractAsyncContextManager[None]:
        return self._locks.hold(validate_name(name))

    def get(self, name: str) -> PersonProfile | None:
        path = self._path_for(name)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise ProfileStoreError(f"Failed to read profile {path.name}: {exc}") from exc

        try:
            return _ProfileRecord.model_validate_json(raw).to_profile()
        except PydanticValidationError as exc:
            raise ProfileStoreError(f"Corrupt profile {path.name}: {exc}") from exc

    def put(self, name: str, profile: PersonProfile) -> None:
        path = self._path_for(name)
        payload = _ProfileRecord.from_profile(profile).model_dump_json(by_alias=True, indent=2)

        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._names.add(path.stem)
        logger.debug("Wrote profile %s (%d embeddings)", path.name, profile.sample_count)

    def delete(self, name: str) -> bool:
        path = self._path_for(name)
        self._names.discard(path.stem)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def names(self) -> list[str]:
        return sorted(self._names)

    def count(self) -> int:
        return len(self._names)

    def _path_for(self, name: str) -> Path:
        return self._dir / f"{validate_name(name)}.json"
