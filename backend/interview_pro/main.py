"""
FastAPI backend for the interview practice app.
Sessions, interview spaces (company + role + resume) and interview rounds.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel, Field
from sqlmodel import select

from interview_pro import config, llm
from interview_pro.auth import load_owned_space, parse_record_id, require_owned_space, require_session
from interview_pro.db import get_session, init_db
from interview_pro.errors import ApiError
from interview_pro.models import (
    QuestionAnswerRecord,
    RoundRecord,
    RoundStatus,
    SessionRecord,
    SpaceRecord,
    utcnow,
)
from interview_pro.resume import (
    ResumeError,
    check_upload,
    discard_resume,
    extract_resume_text,
    resolve_resume_path,
    save_resume,
)

LOG = logging.getLogger("interview")

app = FastAPI(title="Interview Pro", version="0.1.0")


@app.on_event("startup")
async def on_startup() -> None:
    await init_db()
    config.RESUME_DIR.mkdir(parents=True, exist_ok=True)
    LOG.info("database ready; resumes stored in %s", config.RESUME_DIR)


app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"success": False, "message": message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    LOG.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Something went wrong on our end. Please try again later."},
    )


@app.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


def serialize_round(round_row: RoundRecord) -> Dict[str, Any]:
    return {
        "id": round_row.id,
        "name": round_row.name,
        "status": round_row.status,
        "summary": round_row.summary,
    }


def serialize_space(space: SpaceRecord, rounds: List[RoundRecord], include_resume_text: bool = False) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": space.id,
        "studentId": space.student_id,
        "companyName": space.company_name,
        "jobPosition": space.job_position,
        "jobDescription": space.job_description,
        "resumePath": space.resume_path,
        "purifiedSummary": space.purified_summary,
        "interviewRounds": [serialize_round(r) for r in rounds],
        "createdAt": space.created_at,
        "updatedAt": space.updated_at,
    }
    if include_resume_text:
        payload["resumeText"] = space.resume_text
    return payload


async def _load_rounds(session: Any, space_id: int) -> List[RoundRecord]:
    return (
        await session.exec(
            select(RoundRecord).where(RoundRecord.space_id == space_id).order_by(RoundRecord.position)
        )
    ).all()


async def _find_round(session: Any, space_id: int, round_name: str) -> RoundRecord:
    round_row = (
        await session.exec(
            select(RoundRecord).where(RoundRecord.space_id == space_id, RoundRecord.name == round_name)
        )
    ).first()
    if round_row is None:
        raise ApiError(404, "Round not found")
    return round_row


def _set_session_cookie(response: Response, unique_id: str) -> None:
    response.set_cookie(
        config.SESSION_COOKIE,
        unique_id,
        max_age=config.SESSION_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=config.SESSION_COOKIE_SECURE,
    )


# --- sessions ---------------------------------------------------------------


class StartSessionPayload(BaseModel):
    name: Optional[str] = None


class ContinueSessionPayload(BaseModel):
    unique_id: Optional[str] = Field(default=None, alias="uniqueId")


class UpdateProfilePayload(BaseModel):
    name: Optional[str] = None


@app.post("/api/session/start-new", status_code=201)
async def start_new_session(payload: StartSessionPayload, response: Response) -> Dict[str, Any]:
    name = (payload.name or "").strip()
    if not name:
        raise ApiError(400, "Name is required")
    async with get_session() as session:
        unique_id = secrets.token_hex(4)
        while await session.get(SessionRecord, unique_id) is not None:
            unique_id = secrets.token_hex(4)
        session.add(SessionRecord(unique_id=unique_id, name=name))
        await session.commit()
    _set_session_cookie(response, unique_id)
    LOG.info("session created: %s", unique_id)
    return {"success": True, "uniqueId": unique_id, "name": name, "message": "Session created successfully"}


@app.post("/api/session/continue")
async def continue_session(payload: ContinueSessionPayload, response: Response) -> Dict[str, Any]:
    unique_id = (payload.unique_id or "").strip()
    if not unique_id:
        raise ApiError(400, "Session ID is required")
    async with get_session() as session:
        record = await session.get(SessionRecord, unique_id)
        if record is None:
            raise ApiError(404, "Session not found. Please check your ID.")
        record.last_active = utcnow()
        session.add(record)
        await session.commit()
        name = record.name
    _set_session_cookie(response, unique_id)
    return {"success": True, "name": name, "message": "Session found successfully"}


@app.get("/api/session/profile")
async def get_profile(owner: SessionRecord = Depends(require_session)) -> Dict[str, Any]:
    async with get_session() as session:
        space_ids = (
            await session.exec(select(SpaceRecord.id).where(SpaceRecord.student_id == owner.unique_id))
        ).all()
    return {
        "success": True,
        "user": {"name": owner.name},
        "sessionId": owner.unique_id,
        "spaces": list(space_ids),
        "lastActive": owner.last_active,
    }


@app.post("/api/session/update-profile")
async def update_profile(
    payload: UpdateProfilePayload, owner: SessionRecord = Depends(require_session)
) -> Dict[str, Any]:
    name = (payload.name or "").strip()
    if not name:
        raise ApiError(400, "Name is required")
    async with get_session() as session:
        record = await session.get(SessionRecord, owner.unique_id)
        if record is None:
            raise ApiError(404, "Session not found")
        record.name = name
        session.add(record)
        await session.commit()
    return {"success": True, "message": "Profile updated successfully"}


@app.get("/api/session/end")
async def end_session(response: Response) -> Dict[str, Any]:
    response.delete_cookie(config.SESSION_COOKIE)
    return {"success": True, "message": "Session ended successfully"}


# --- spaces -----------------------------------------------------------------


@app.get("/api/spaces")
async def list_spaces(owner: SessionRecord = Depends(require_session)) -> Dict[str, Any]:
    async with get_session() as session:
        spaces = (
            await session.exec(
                select(SpaceRecord)
                .where(SpaceRecord.student_id == owner.unique_id)
                .order_by(SpaceRecord.created_at.desc())
            )
        ).all()
        items = [serialize_space(space, await _load_rounds(session, space.id)) for space in spaces]
    return {"success": True, "spaces": items}


@app.post("/api/spaces/create", status_code=201)
async def create_space(
    company_name: Optional[str] = Form(default=None, alias="companyName"),
    job_position: Optional[str] = Form(default=None, alias="jobPosition"),
    job_description: Optional[str] = Form(default=None, alias="jobDescription"),
    interview_rounds: List[str] = Form(default=[], alias="interviewRounds"),
    resume: Optional[UploadFile] = File(default=None),
    owner: SessionRecord = Depends(require_session),
) -> Dict[str, Any]:
    company_name = (company_name or "").strip()
    job_position = (job_position or "").strip()
    rounds = [name.strip() for name in interview_rounds if name and name.strip()]
    if not company_name or not job_position or not interview_rounds or resume is None:
        raise ApiError(400, "Company name, job position, interview rounds, and resume are required.")
    if not rounds:
        raise ApiError(400, "At least one interview round is required.")

    payload = await resume.read()
    filename = resume.filename or ""
    try:
        check_upload(payload, filename)
        resume_text = extract_resume_text(payload, filename)
    except ResumeError as exc:
        raise ApiError(400, str(exc)) from exc

    described = llm.has_job_description(job_description)
    purified_summary = await llm.summarize_resume(resume_text, job_description if described else None)

    stored_name = save_resume(payload, filename)
    try:
        async with get_session() as session:
            space = SpaceRecord(
                student_id=owner.unique_id,
                company_name=company_name,
                job_position=job_position,
                job_description=job_description.strip() if described else "N/A",
                resume_path=stored_name,
                resume_text=resume_text,
                purified_summary=purified_summary,
            )
            session.add(space)
            await session.flush()
            for position, name in enumerate(dict.fromkeys(rounds)):
                session.add(RoundRecord(space_id=space.id, position=position, name=name))
            await session.commit()
            space_id = space.id
    except Exception:
        discard_resume(stored_name)
        raise
    LOG.info("space %s created for session %s (%s rounds)", space_id, owner.unique_id, len(rounds))
    return {"success": True, "spaceId": space_id, "message": "Interview space created successfully"}


@app.get("/api/spaces/{space_id}")
async def get_space_details(space: SpaceRecord = Depends(require_owned_space)) -> Dict[str, Any]:
    async with get_session() as session:
        rounds = await _load_rounds(session, space.id)
    return {"success": True, "space": serialize_space(space, rounds, include_resume_text=True)}


@app.get("/api/spaces/resume/{space_id}")
async def download_resume(space: SpaceRecord = Depends(require_owned_space)) -> FileResponse:
    path = resolve_resume_path(space.resume_path)
    if path is None:
        raise ApiError(403, "Access denied")
    if not path.is_file():
        raise ApiError(404, "Resume file not found")
    return FileResponse(path, filename=space.resume_path)


# --- interview rounds -------------------------------------------------------


class FinishRoundPayload(BaseModel):
    answers: Dict[str, str] = Field(default_factory=dict)


@app.get("/api/interview/{space_id}/{round_name:path}/generate-questions")
async def generate_questions(
    round_name: str, space: SpaceRecord = Depends(require_owned_space)
) -> Any:
    async with get_session() as session:
        round_row = await _find_round(session, space.id, round_name)
        if round_row.status != RoundStatus.COMPLETED.value:
            round_row.status = RoundStatus.IN_PROGRESS.value
            session.add(round_row)
            await session.commit()

    questions = await llm.generate_questions(
        job_position=space.job_position,
        company_name=space.company_name,
        job_description=space.job_description,
        resume_summary=space.purified_summary,
        round_name=round_name,
    )
    if not questions:
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Failed to generate interview questions"},
        )
    LOG.info("generated %s questions for space=%s round=%s", len(questions), space.id, round_name)
    return {"success": True, "questions": questions}


async def store_round_summary(round_id: int, space_id: int, answers: Dict[str, str]) -> None:
    """Background job: ask the AI for the round evaluation and keep it on the round."""
    async with get_session() as session:
        space = await session.get(SpaceRecord, space_id)
        round_row = await session.get(RoundRecord, round_id)
        if space is None or round_row is None:
            LOG.warning("summary skipped; space=%s round=%s vanished", space_id, round_id)
            return
        summary = await llm.summarize_round(
            round_name=round_row.name,
            company_name=space.company_name,
            job_position=space.job_position,
            answers=answers,
        )
        if not summary:
            LOG.warning("round summary unavailable for space=%s round=%s", space_id, round_row.name)
            return
        round_row.summary = summary
        session.add(round_row)
        await session.commit()
    LOG.info("round summary stored for space=%s round=%s", space_id, round_id)


@app.post("/api/interview/{space_id}/{round_name:path}/finish")
async def finish_round(
    space_id: str,
    round_name: str,
    payload: FinishRoundPayload,
    background_tasks: BackgroundTasks,
    owner: SessionRecord = Depends(require_session),
) -> Dict[str, Any]:
    if not payload.answers:
        raise ApiError(400, "No answers provided")
    space = await load_owned_space(space_id, owner)
    async with get_session() as session:
        round_row = await _find_round(session, space.id, round_name)
        for question, answer in payload.answers.items():
            session.add(
                QuestionAnswerRecord(
                    space_id=space.id,
                    round_name=round_name,
                    question=question,
                    answer=answer,
                )
            )
        round_row.status = RoundStatus.COMPLETED.value
        session.add(round_row)
        await session.commit()
        round_id = round_row.id

    background_tasks.add_task(store_round_summary, round_id, space.id, dict(payload.answers))
    return {"success": True, "message": "Round completed; summary is being generated"}


@app.get("/api/interview/questions-answers/{round_id}")
async def get_questions_answers(round_id: str, owner: SessionRecord = Depends(require_session)) -> Dict[str, Any]:
    parsed = parse_record_id(round_id)
    async with get_session() as session:
        round_row = await session.get(RoundRecord, parsed) if parsed is not None else None
        space = await session.get(SpaceRecord, round_row.space_id) if round_row is not None else None
        if round_row is None or space is None:
            raise ApiError(404, "Round not found")
        if space.student_id != owner.unique_id:
            raise ApiError(403, "Not authorized to access this round")
        rows = (
            await session.exec(
                select(QuestionAnswerRecord)
                .where(
                    QuestionAnswerRecord.space_id == space.id,
                    QuestionAnswerRecord.round_name == round_row.name,
                )
                .order_by(QuestionAnswerRecord.created_at, QuestionAnswerRecord.id)
            )
        ).all()
    return {
        "success": True,
        "questionsAnswers": [
            {
                "id": row.id,
                "question": row.question,
                "answer": row.answer,
                "isFollowUp": row.is_follow_up,
                "createdAt": row.created_at,
            }
            for row in rows
        ],
    }
