from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional
from urllib.parse import quote

import httpx

from interview_pro import config

LOG = logging.getLogger("interview.client.api")


def _segment(value: Any) -> str:
    return quote(str(value), safe="")


class ApiRequestError(RuntimeError):
    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class InterviewApiClient:
    """Async client for the REST API; carries the session id as a header."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        session_id: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ) -> None:
        self.session_id = session_id
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "InterviewApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _headers(self) -> Dict[str, str]:
        if not self.session_id:
            return {}
        return {config.SESSION_HEADER: self.session_id}

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        resp = await self._client.request(method, f"/api{path}", headers=self._headers(), **kwargs)
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {"data": data}
        if resp.status_code >= 400:
            message = str(data.get("message") or resp.reason_phrase or "request failed")
            LOG.warning("%s %s -> %s: %s", method, path, resp.status_code, message)
            raise ApiRequestError(resp.status_code, message)
        return data

    # sessions
    async def start_new_session(self, name: str) -> Dict[str, Any]:
        data = await self._request("POST", "/session/start-new", json={"name": name})
        self.session_id = data.get("uniqueId") or self.session_id
        return data

    async def continue_session(self, unique_id: str) -> Dict[str, Any]:
        data = await self._request("POST", "/session/continue", json={"uniqueId": unique_id})
        self.session_id = unique_id
        return data

    async def get_profile(self) -> Dict[str, Any]:
        return await self._request("GET", "/session/profile")

    async def update_profile(self, name: str) -> Dict[str, Any]:
        return await self._request("POST", "/session/update-profile", json={"name": name})

    async def end_session(self) -> Dict[str, Any]:
        data = await self._request("GET", "/session/end")
        self.session_id = None
        return data

    # spaces
    async def list_spaces(self) -> Dict[str, Any]:
        return await self._request("GET", "/spaces")

    async def get_space(self, space_id: Any) -> Dict[str, Any]:
        return await self._request("GET", f"/spaces/{space_id}")

    # interview rounds
    async def generate_questions(self, space_id: Any, round_name: str) -> Dict[str, Any]:
        return await self._request("GET", f"/interview/{space_id}/{_segment(round_name)}/generate-questions")

    async def finish_round(self, space_id: Any, round_name: str, answers: Mapping[str, str]) -> Dict[str, Any]:
        path = f"/interview/{space_id}/{_segment(round_name)}/finish"
        return await self._request("POST", path, json={"answers": dict(answers)})

    async def get_questions_answers(self, round_id: Any) -> Dict[str, Any]:
        return await self._request("GET", f"/interview/questions-answers/{round_id}")
