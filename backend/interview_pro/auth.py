from __future__ import annotations

from typing import Optional, Union

from fastapi import Depends, Request

from interview_pro import config
from interview_pro.db import get_session
from interview_pro.errors import ApiError
from interview_pro.models import SessionRecord, SpaceRecord


def read_session_id(request: Request) -> Optional[str]:
    value = request.cookies.get(config.SESSION_COOKIE) or request.headers.get(config.SESSION_HEADER)
    value = (value or "").strip()
    return value or None


def parse_record_id(value: Union[str, int]) -> Optional[int]:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed > 0 else None


async def require_session(request: Request) -> SessionRecord:
    session_id = read_session_id(request)
    if not session_id:
        raise ApiError(401, "Not authorized, please log in")
    async with get_session() as session:
        record = await session.get(SessionRecord, session_id)
    if record is None:
        raise ApiError(401, "Not authorized, please log in")
    return record


async def load_owned_space(space_id: Union[str, int], owner: SessionRecord, noun: str = "space") -> SpaceRecord:
    parsed = parse_record_id(space_id)
    space = None
    if parsed is not None:
        async with get_session() as session:
            space = await session.get(SpaceRecord, parsed)
    if space is None:
        raise ApiError(404, "Space not found")
    if space.student_id != owner.unique_id:
        raise ApiError(403, f"Not authorized to access this {noun}")
    return space


async def require_owned_space(space_id: str, owner: SessionRecord = Depends(require_session)) -> SpaceRecord:
    return await load_owned_space(space_id, owner)
