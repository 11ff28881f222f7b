from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp() -> Any:
    return Field(default_factory=utcnow, sa_type=DateTime(timezone=True))


class RoundStatus(str, Enum):
    NOT_COMPLETED = "not completed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SessionRecord(SQLModel, table=True):
    unique_id: str = Field(primary_key=True)
    name: str
    last_active: datetime = _timestamp()
    created_at: datetime = _timestamp()


class SpaceRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: str = Field(foreign_key="sessionrecord.unique_id", index=True)
    company_name: str
    job_position: str
    job_description: str
    resume_path: str
    resume_text: str
    purified_summary: str
    created_at: datetime = _timestamp()
    updated_at: datetime = _timestamp()


class RoundRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    space_id: int = Field(foreign_key="spacerecord.id", index=True)
    position: int = 0  # order within the space
    name: str
    status: str = Field(default=RoundStatus.NOT_COMPLETED.value)
    summary: str = Field(default="")


class QuestionAnswerRecord(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    space_id: int = Field(foreign_key="spacerecord.id", index=True)
    round_name: str
    question: str
    answer: str = Field(default="")
    is_follow_up: bool = Field(default=False)
    created_at: datetime = _timestamp()
