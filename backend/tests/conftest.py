from io import BytesIO

import pytest
from docx import Document
from fastapi.testclient import TestClient

from interview_pro import config, db, llm

QUESTION_LIST = "Here you go:\n1. What drew you to Acme?\n2. Describe a hard bug.\n3. How do you test code?\nGood luck!"


class FakeLLM:
    """Replaces llm.complete; answers by purpose and records prompts."""

    def __init__(self):
        self.calls = []
        self.replies = {
            "questions": QUESTION_LIST,
            "resume_summary": "Seasoned backend engineer.",
            "round_summary": "Strong answers overall.",
        }

    async def __call__(self, system_prompt, user_prompt, *, max_tokens=1024, temperature=0.7, purpose="completion"):
        self.calls.append((purpose, user_prompt))
        return self.replies.get(purpose)


@pytest.fixture
def fake_llm(monkeypatch):
    fake = FakeLLM()
    monkeypatch.setattr(llm, "complete", fake)
    return fake


@pytest.fixture
def resume_dir(tmp_path, monkeypatch):
    directory = tmp_path / "resumes"
    monkeypatch.setattr(config, "RESUME_DIR", directory)
    return directory


@pytest.fixture
def client(tmp_path, resume_dir, fake_llm):
    db.configure(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    from interview_pro.main import app

    with TestClient(app) as test_client:
        yield test_client


def docx_bytes(*paragraphs):
    document = Document()
    for text in paragraphs:
        document.add_paragraph(text)
    buffer = BytesIO()
    document.save(buffer)
    return buffer.getvalue()


DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def create_space(client, rounds=("Technical", "HR"), job_description="Build and run payment services at scale."):
    response = client.post(
        "/api/spaces/create",
        data={
            "companyName": "Acme",
            "jobPosition": "Backend Engineer",
            "jobDescription": job_description,
            "interviewRounds": list(rounds),
        },
        files={"resume": ("cv.docx", docx_bytes("Jane Doe", "Python, SQL, Kubernetes"), DOCX_MIME)},
    )
    assert response.status_code == 201, response.text
    return response.json()["spaceId"]


def start_session(client, name="Jane"):
    response = client.post("/api/session/start-new", json={"name": name})
    assert response.status_code == 201
    return response.json()["uniqueId"]
