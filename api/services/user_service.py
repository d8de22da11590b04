"""User use cases: CRUD pass-through, inline patch and the listing query."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from api.domain.users import (
    ROLES,
    User,
    UserDirectoryError,
    validate_draft_for_create,
)
from api.repositories.user_repository import UserRepository

SORT_FIELDS = ("id", "name", "email", "role")
SORT_DIRECTIONS = ("asc", "desc", "")
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100


class InvalidQueryError(UserDirectoryError):
    """Raised when listing parameters are out of range."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclass
class UserQuery:
    search: str = ""
    role: str = "all"
    sort: str = "id"
    direction: str = "asc"
    page: int = 0
    page_size: int = DEFAULT_PAGE_SIZE

    def validate(self) -> None:
        if self.role != "all" and self.role not in ROLES:
            raise InvalidQueryError(f"Unknown role filter: {self.role}")
        if self.sort not in SORT_FIELDS:
            raise InvalidQueryError(f"Unknown sort field: {self.sort}")
        if self.direction not in SORT_DIRECTIONS:
            raise InvalidQueryError(f"Unknown sort direction: {self.direction}")
        if self.page < 0:
            raise InvalidQueryError("Page must be zero or greater")
        if not 1 <= self.page_size <= MAX_PAGE_SIZE:
            raise InvalidQueryError(f"Page size must be between 1 and {MAX_PAGE_SIZE}")


@dataclass
class UserPage:
    total: int
    page: int
    page_size: int
    items: list[User] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "items": [user.to_dict() for user in self.items],
        }


def _matches(user: User, term: str, role: str) -> bool:
    if term and term not in user.full_name.lower() and term not in user.email.lower():
        return False
    return role == "all" or user.role == role


def _sort_key(sort: str):
    if sort == "name":
        return lambda user: user.full_name.lower()
    if sort == "email":
        return lambda user: user.email.lower()
    if sort == "role":
        return lambda user: user.role
    return lambda user: user.id


class UserService:
    """Thin layer between the HTTP routers and the repository."""

    def __init__(self, repository: UserRepository) -> None:
        self.repository = repository

    async def list_users(self) -> list[User]:
        return await self.repository.find_all()

    async def get_user(self, user_id: int) -> Optional[User]:
        return await self.repository.find_by_id(user_id)

    async def create_user(self, payload: Any) -> User:
        return await self.repository.create(validate_draft_for_create(payload))

    async def update_user(self, user_id: int, payload: Any) -> Optional[User]:
        draft = validate_draft_for_create(payload)
        return await self.repository.update(user_id, draft)

    async def patch_user(self, user_id: int, changes: Mapping[str, Any]) -> Optional[User]:
        return await self.repository.patch(user_id, changes)

    async def delete_user(self, user_id: int) -> bool:
        return await self.repository.delete(user_id)

    async def query_users(self, query: UserQuery) -> UserPage:
        """Filter, sort and paginate. A page past the end is clamped to the last one."""
        query.validate()
        term = query.search.strip().lower()
        users = [u for u in await self.repository.find_all() if _matches(u, term, query.role)]
        if query.direction:
            users.sort(key=_sort_key(query.sort), reverse=query.direction == "desc")

        total = len(users)
        last_page = max(0, math.ceil(total / query.page_size) - 1)
        page = min(query.page, last_page)
        start = page * query.page_size
        return UserPage(
            total=total,
            page=page,
            page_size=query.page_size,
            items=users[start:start + query.page_size],
        )
