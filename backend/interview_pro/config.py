from __future__ import annotations

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data.db")

RESUME_DIR = Path(os.getenv("RESUME_DIR", "./public/Resumes"))
MAX_RESUME_BYTES = int(os.getenv("MAX_RESUME_BYTES", str(10 * 1024 * 1024)))
ALLOWED_RESUME_SUFFIXES = (".pdf", ".docx")

LLM_API_KEY = os.getenv("LLM_API_KEY")
LLM_MODEL = os.getenv("LLM_MODEL", "meta/llama-4-maverick-17b-128e-instruct")
LLM_URL = os.getenv("LLM_URL", "https://integrate.api.nvidia.com/v1/chat/completions")
LLM_TIMEOUT = float(os.getenv("LLM_TIMEOUT", "30"))
QUESTION_COUNT = int(os.getenv("QUESTION_COUNT", "15"))

CORS_ORIGINS = _split_csv(os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"))
SESSION_COOKIE = os.getenv("SESSION_COOKIE", "interview-pro-session")
SESSION_HEADER = "X-Session-Id"
SESSION_MAX_AGE = 30 * 24 * 60 * 60  # 30 days
SESSION_COOKIE_SECURE = os.getenv("ENVIRONMENT", "development") == "production"

# Seconds between recognition restarts; the platform limit was never pinned down.
RECOGNITION_LEASE_SECONDS = float(os.getenv("RECOGNITION_LEASE_SECONDS", "10"))
