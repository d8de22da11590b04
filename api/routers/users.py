from __future__ import annotations

import logging
import re
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse

from api.domain.users import ValidationError
from api.services.user_service import (
    DEFAULT_PAGE_SIZE,
    InvalidQueryError,
    UserQuery,
    UserService,
)

logger = logging.getLogger(__name__)

ID_PATTERN = re.compile(r"[0-9]+")

router = APIRouter(prefix="/users", tags=["users"])


def _get_user_service(request: Request) -> UserService:
    svc = getattr(getattr(request.app, "state", None), "user_service", None)
    if not svc:
        raise RuntimeError("UserService not configured")
    return svc


def _parse_id(raw: str) -> int:
    if not ID_PATTERN.fullmatch(raw):
        raise HTTPException(400, "Invalid user id")
    return int(raw)


def _not_found() -> HTTPException:
    return HTTPException(400, "User not found")


def _validation_response(err: ValidationError) -> JSONResponse:
    return JSONResponse(err.to_dict(), status_code=400)


@router.get("")
async def list_users(request: Request):
    svc = _get_user_service(request)
    return [user.to_dict() for user in await svc.list_users()]


# Registered before /{user_id} so "page" is not read as an id.
@router.get("/page")
async def page_users(
    request: Request,
    search: str = "",
    role: str = "all",
    sort: str = "id",
    direction: str = "asc",
    page: int = 0,
    page_size: int = Query(DEFAULT_PAGE_SIZE, alias="pageSize"),
):
    svc = _get_user_service(request)
    query = UserQuery(search=search, role=role, sort=sort, direction=direction, page=page, page_size=page_size)
    try:
        result = await svc.query_users(query)
    except InvalidQueryError as exc:
        raise HTTPException(400, exc.message)
    return result.to_dict()


@router.get("/{user_id}")
async def get_user(user_id: str, request: Request):
    numeric_id = _parse_id(user_id)
    user = await _get_user_service(request).get_user(numeric_id)
    if not user:
        raise _not_found()
    return user.to_dict()


@router.post("", status_code=201)
async def create_user(request: Request, payload: Any = Body(None)):
    svc = _get_user_service(request)
    try:
        user = await svc.create_user(payload)
    except ValidationError as exc:
        return _validation_response(exc)
    logger.info("User %d created", user.id, extra={"user_id": user.id})
    return user.to_dict()


@router.put("/{user_id}")
async def update_user(user_id: str, request: Request, payload: Any = Body(None)):
    numeric_id = _parse_id(user_id)
    svc = _get_user_service(request)
    try:
        user = await svc.update_user(numeric_id, payload)
    except ValidationError as exc:
        return _validation_response(exc)
    if not user:
        raise _not_found()
    logger.info("User %d updated", user.id, extra={"user_id": user.id})
    return user.to_dict()


@router.patch("/{user_id}")
async def patch_user(user_id: str, request: Request, payload: Any = Body(None)):
    numeric_id = _parse_id(user_id)
    svc = _get_user_service(request)
    try:
        user = await svc.patch_user(numeric_id, payload)
    except ValidationError as exc:
        return _validation_response(exc)
    if not user:
        raise _not_found()
    logger.info("User %d patched", user.id, extra={"user_id": user.id})
    return user.to_dict()


@router.delete("/{user_id}", status_code=204)
async def delete_user(user_id: str, request: Request):
    numeric_id = _parse_id(user_id)
    removed = await _get_user_service(request).delete_user(numeric_id)
    if not removed:
        raise _not_found()
    logger.info("User %d deleted", numeric_id, extra={"user_id": numeric_id})
    return Response(status_code=204)
