"""Client side of an interview round: state machine plus speech and media seams."""

from interview_pro.client.api import ApiRequestError, InterviewApiClient
from interview_pro.client.session import (
    ClientEnvironment,
    InterviewSession,
    QuestionGenerationError,
    SessionConfig,
    SessionPhase,
    SessionStateError,
)

__all__ = [
    "ApiRequestError",
    "ClientEnvironment",
    "InterviewApiClient",
    "InterviewSession",
    "QuestionGenerationError",
    "SessionConfig",
    "SessionPhase",
    "SessionStateError",
]
