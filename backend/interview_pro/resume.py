from __future__ import annotations

import logging
import time
from io import BytesIO
from pathlib import Path
from typing import Optional
from zipfile import BadZipFile

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from interview_pro import config

LOG = logging.getLogger("interview.resume")


class ResumeError(ValueError):
    """Upload rejected or unreadable."""


def resume_suffix(filename: Optional[str]) -> str:
    suffix = Path(filename or "").suffix.lower()
    if suffix not in config.ALLOWED_RESUME_SUFFIXES:
        raise ResumeError("Only PDF and DOCX file types are supported.")
    return suffix


def extract_text_from_pdf(payload: bytes) -> str:
    try:
        reader = PdfReader(BytesIO(payload))
        pages = [page.extract_text() or "" for page in reader.pages]
    except (PdfReadError, ValueError) as exc:
        raise ResumeError(f"Could not read PDF resume: {exc}") from exc
    return "\n".join(pages).strip()


def extract_text_from_docx(payload: bytes) -> str:
    try:
        document = Document(BytesIO(payload))
    except (PackageNotFoundError, BadZipFile, KeyError, ValueError) as exc:
        raise ResumeError(f"Could not read DOCX resume: {exc}") from exc
    return "\n".join(p.text for p in document.paragraphs if p.text).strip()


def extract_resume_text(payload: bytes, filename: str) -> str:
    if resume_suffix(filename) == ".pdf":
        return extract_text_from_pdf(payload)
    return extract_text_from_docx(payload)


def check_upload(payload: bytes, filename: Optional[str]) -> str:
    if len(payload) > config.MAX_RESUME_BYTES:
        limit_mb = config.MAX_RESUME_BYTES // (1024 * 1024)
        raise ResumeError(f"File size exceeds the maximum limit ({limit_mb}MB)")
    return resume_suffix(filename)


def save_resume(payload: bytes, filename: str, directory: Optional[Path] = None) -> str:
    """Write the upload under the resume directory; returns the stored file name."""
    check_upload(payload, filename)
    target_dir = directory or config.RESUME_DIR
    target_dir.mkdir(parents=True, exist_ok=True)
    stored_name = f"{int(time.time() * 1000)}-{Path(filename).name}"
    (target_dir / stored_name).write_bytes(payload)
    LOG.info("Stored resume %s (%s bytes)", stored_name, len(payload))
    return stored_name


def resolve_resume_path(stored_name: str, directory: Optional[Path] = None) -> Optional[Path]:
    """Absolute path of a stored resume, or None if it would escape the resume directory."""
    base = (directory or config.RESUME_DIR).resolve()
    candidate = (base / stored_name).resolve()
    if candidate != base and base not in candidate.parents:
        return None
    return candidate


def discard_resume(stored_name: str, directory: Optional[Path] = None) -> None:
    path = resolve_resume_path(stored_name, directory)
    if path is not None and path.is_file():
        path.unlink()
        LOG.info("Removed resume %s", stored_name)
