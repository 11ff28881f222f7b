"""
Chat-completions adapter used for question generation and the two summaries.

Every call degrades to ``None`` (or an empty list) instead of raising, the
callers decide whether that is a 500, a fallback text or a skipped update.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

import httpx

from interview_pro import config

LOG = logging.getLogger("interview.llm")

RESUME_SUMMARY_FALLBACK = (
    "There was an error generating the resume summary. Please try uploading your resume again."
)
_NUMBERED_LINE = re.compile(r"^\d+\.\s*")
_MIN_JOB_DESCRIPTION = 20


def has_job_description(job_description: Optional[str]) -> bool:
    return bool(job_description) and len(job_description.strip()) > _MIN_JOB_DESCRIPTION


async def complete(
    system_prompt: str,
    user_prompt: str,
    *,
    max_tokens: int = 1024,
    temperature: float = 0.7,
    purpose: str = "completion",
) -> Optional[str]:
    api_key = config.LLM_API_KEY
    if not api_key:
        LOG.warning("LLM_API_KEY missing; %s skipped", purpose)
        return None
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Accept": "application/json",
        "Content-Type": "application/json",
    }
    payload = {
        "model": config.LLM_MODEL,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        "max_tokens": max_tokens,
        "temperature": temperature,
        "top_p": 1.0,
        "stream": False,
    }
    try:
        async with httpx.AsyncClient(timeout=config.LLM_TIMEOUT) as client:
            LOG.info("Calling LLM (%s): model=%s prompt_len=%s", purpose, config.LLM_MODEL, len(user_prompt))
            resp = await client.post(config.LLM_URL, headers=headers, json=payload)
    except httpx.HTTPError as exc:
        LOG.warning("LLM %s request failed: %s", purpose, exc)
        return None

    if resp.status_code != 200:
        LOG.warning("LLM responded with %s (%s): %s", resp.status_code, purpose, resp.text[:200])
        return None

    try:
        data = resp.json()
        choices = data.get("choices") or []
        content = choices[0].get("message", {}).get("content", "").strip() if choices else ""
    except (ValueError, AttributeError, IndexError):
        content = ""
    if not content:
        LOG.warning("LLM %s returned empty content", purpose)
        return None
    return content


def parse_numbered_questions(text: str) -> List[str]:
    """Keep lines shaped like ``12. question`` and strip the numbering."""
    questions: List[str] = []
    for line in (text or "").splitlines():
        stripped = line.strip()
        if not _NUMBERED_LINE.match(stripped):
            continue
        question = _NUMBERED_LINE.sub("", stripped).strip()
        if question:
            questions.append(question)
    return questions


def build_questions_prompt(
    *,
    job_position: str,
    company_name: str,
    job_description: str,
    resume_summary: str,
    round_name: str,
    count: int,
) -> str:
    warm_up = 3 if count >= 5 else 1
    reflective = 2 if count >= 5 else 0
    core = max(count - warm_up - reflective, 0)
    return (
        "Based on the following details:\n"
        f"- Job Role: {job_position}\n"
        f"- Company: {company_name}\n"
        f"- Job Description: {job_description[:1000]}\n"
        f"- Resume Summary: {resume_summary[:1000]}\n"
        f"- Interview Round: {round_name}\n\n"
        f"Generate exactly {count} high-quality personalized interview questions for this round. "
        "The questions should be appropriate for the specific round type and challenging but fair. "
        "Structure the questions as follows:\n"
        f"1. Start with {warm_up} warm-up questions.\n"
        f"2. Include {core} role-specific and challenging questions related to the candidate's background.\n"
        f"3. End with {reflective} reflective or open-ended questions.\n\n"
        "Format the response as a numbered list:\n"
        "1. [Question 1]\n"
        "2. [Question 2]\n"
        "...\n"
        f"{count}. [Question {count}]"
    )


def build_resume_summary_prompt(resume_text: str, job_description: Optional[str] = None) -> str:
    if has_job_description(job_description):
        return (
            "You're an AI assistant helping to summarize resume content for a job application.\n\n"
            f'Resume text:\n"""\n{resume_text[:3000]}\n"""\n\n'
            f'Job description:\n"""\n{job_description[:1000]}\n"""\n\n'
            "Your task: Analyze this resume and identify the most relevant skills, experiences, and "
            "qualifications that match this job description. Create a concise, professional summary "
            "highlighting the candidate's strengths for this specific role. Format your response as a "
            'well-structured paragraph. Do not include phrases like "Based on the resume" or '
            '"According to the job description" - just provide the direct summary.'
        )
    return (
        "You're an AI assistant helping to summarize resume content.\n\n"
        f'Resume text:\n"""\n{resume_text[:3000]}\n"""\n\n'
        "Your task: Analyze this resume and create a concise, professional summary highlighting the "
        "candidate's key skills, experiences, and qualifications. Format your response as a "
        "well-structured paragraph focusing on their strengths and achievements. Do not include "
        'phrases like "Based on the resume" - just provide the direct summary.'
    )


def build_round_summary_prompt(
    *, round_name: str, company_name: str, job_position: str, answers: Mapping[str, str]
) -> str:
    transcript = "\n".join(f"Q: {question}\nA: {answer}\n" for question, answer in answers.items())
    return (
        f"Summarize the following interview for a {round_name} round at {company_name} "
        f"for a {job_position} position:\n\n"
        f"{transcript}\n"
        "Provide a comprehensive evaluation of the candidate's performance, including:\n"
        "1. Overall impression\n"
        "2. Key strengths demonstrated\n"
        "3. Areas for improvement\n"
        "4. Specific examples from their answers to support your assessment\n"
        "5. Actionable advice for future interviews\n\n"
        "Ensure the summary is balanced, constructive, and helpful for the candidate's growth."
    )


async def generate_questions(
    *,
    job_position: str,
    company_name: str,
    job_description: str,
    resume_summary: str,
    round_name: str,
    count: Optional[int] = None,
) -> List[str]:
    prompt = build_questions_prompt(
        job_position=job_position,
        company_name=company_name,
        job_description=job_description,
        resume_summary=resume_summary,
        round_name=round_name,
        count=count or config.QUESTION_COUNT,
    )
    content = await complete(
        "You are an experienced interviewer preparing a candidate for a real interview.",
        prompt,
        max_tokens=1500,
        temperature=0.8,
        purpose="questions",
    )
    if not content:
        return []
    questions = parse_numbered_questions(content)
    if not questions:
        LOG.warning("LLM question list parse failed; raw content: %s", content[:200])
    return questions


async def summarize_resume(resume_text: str, job_description: Optional[str] = None) -> str:
    content = await complete(
        "You write concise, professional candidate summaries.",
        build_resume_summary_prompt(resume_text, job_description),
        max_tokens=600,
        temperature=0.4,
        purpose="resume_summary",
    )
    return content or RESUME_SUMMARY_FALLBACK


async def summarize_round(
    *, round_name: str, company_name: str, job_position: str, answers: Dict[str, Any]
) -> Optional[str]:
    return await complete(
        "You are an interview coach reviewing a practice interview.",
        build_round_summary_prompt(
            round_name=round_name,
            company_name=company_name,
            job_position=job_position,
            answers=answers,
        ),
        max_tokens=1200,
        temperature=0.5,
        purpose="round_summary",
    )
