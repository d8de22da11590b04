"""In-memory user cache mirrored to a JSON file."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from api.domain.users import (
    User,
    UserDraft,
    ValidationError,
    validate_draft_for_create,
    validate_patch,
    validate_user,
)
from api.repositories.json_storage import StorageError, init_file, load_records, save_records

logger = logging.getLogger(__name__)

DraftInput = Union[UserDraft, Mapping[str, Any]]


def _as_payload(draft: DraftInput) -> dict:
    if isinstance(draft, UserDraft):
        return draft.to_dict()
    if isinstance(draft, Mapping):
        return dict(draft)
    # Let the validators report the wrong shape.
    return draft  # type: ignore[return-value]


class UserRepository:
    """
    Sole owner of the user records for the process.

    The file is read once, on first access. Reads are served from the cache;
    every mutation rewrites the whole file while holding the write lock, so
    concurrent mutations are written one after the other, in issue order.
    """

    def __init__(self, data_file: Path | str) -> None:
        self.data_file = Path(data_file)
        self._cache: dict[int, User] = {}
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._loaded

    # -------------------------- reads --------------------------
    async def find_all(self) -> list[User]:
        await self._ensure_loaded()
        return sorted(self._cache.values(), key=lambda user: user.id)

    async def find_by_id(self, user_id: int) -> Optional[User]:
        await self._ensure_loaded()
        return self._cache.get(user_id)

    # -------------------------- writes --------------------------
    async def create(self, draft: DraftInput) -> User:
        await self._ensure_loaded()
        payload = validate_draft_for_create(_as_payload(draft)).to_dict()
        next_id = max(self._cache, default=0) + 1
        record = validate_user({**payload, "id": next_id})
        self._cache[record.id] = record
        await self._persist()
        return record

    async def update(self, user_id: int, draft: DraftInput) -> Optional[User]:
        await self._ensure_loaded()
        if user_id not in self._cache:
            return None
        payload = validate_draft_for_create(_as_payload(draft)).to_dict()
        record = validate_user({**payload, "id": user_id})
        self._cache[user_id] = record
        await self._persist()
        return record

    async def patch(self, user_id: int, changes: Mapping[str, Any]) -> Optional[User]:
        """Merge ``changes`` into the current record, then re-validate it as a whole."""
        await self._ensure_loaded()
        current = self._cache.get(user_id)
        if current is None:
            return None
        merged = {**current.to_draft().to_dict(), **validate_patch(changes)}
        draft = validate_draft_for_create(merged)
        record = validate_user({**draft.to_dict(), "id": user_id})
        self._cache[user_id] = record
        await self._persist()
        return record

    async def delete(self, user_id: int) -> bool:
        await self._ensure_loaded()
        if user_id not in self._cache:
            return False
        del self._cache[user_id]
        await self._persist()
        return True

    # -------------------------- helpers --------------------------
    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._load_lock:
            if self._loaded:
                return
            raw = await asyncio.to_thread(load_records, self.data_file)
            if raw is None:
                logger.info("Users file missing, creating it", extra={"path": str(self.data_file)})
                await asyncio.to_thread(init_file, self.data_file)
                raw = []
            for item in raw:
                try:
                    user = validate_user(item)
                except ValidationError as exc:
                    logger.warning("Skipping invalid user record: %s", exc)
                    continue
                self._cache[user.id] = user
            self._loaded = True
            logger.info(
                "Loaded %d users from %s",
                len(self._cache),
                self.data_file,
                extra={"path": str(self.data_file), "records": len(self._cache)},
            )

    async def _persist(self) -> None:
        # The cache keeps the mutation if the write fails.
        async with self._write_lock:
            records = [user.to_dict() for user in self._cache.values()]
            write = asyncio.ensure_future(asyncio.to_thread(save_records, self.data_file, records))
            try:
                await asyncio.shield(write)
            except asyncio.CancelledError:
                await self._drain(write)
                raise
            except StorageError:
                logger.exception("Failed to write users file", extra={"path": str(self.data_file)})
                raise

    async def _drain(self, write: asyncio.Future) -> None:
        """Hold the write lock until a cancelled caller's thread is done with the file."""
        while not write.done():
            try:
                await asyncio.wait([write])
            except asyncio.CancelledError:
                continue
        if not write.cancelled() and write.exception() is not None:
            logger.error(
                "Failed to write users file after cancellation",
                exc_info=write.exception(),
                extra={"path": str(self.data_file)},
            )
