from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from avatar_interview.errors import AvatarUnavailableError
from core.config import AVATAR_ID, AVATAR_PROXY_URL, AVATAR_QUALITY
from core.logger import log_event
from core.state import AvatarReadiness

logger = logging.getLogger("avatar_client")


@dataclass
class AvatarSessionInfo:
    url: str
    access_token: str
    session_id: str


class AvatarProxyClient:
    """Thin request/response wrapper over the avatar streaming proxy."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = AVATAR_PROXY_URL,
        avatar_id: str = AVATAR_ID,
        quality: str = AVATAR_QUALITY,
    ):
        self.http_client = http_client
        self.base_url = str(base_url or "").rstrip("/")
        self.avatar_id = avatar_id
        self.quality = quality

    async def _post(self, path: str, payload: dict | None = None, token: str | None = None) -> dict:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        response = await self.http_client.post(f"{self.base_url}/{path}", json=payload or {}, headers=headers)
        response.raise_for_status()
        body = response.json() if response.content else {}
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            return body["data"]
        return body if isinstance(body, dict) else {}

    async def create_token(self) -> str:
        data = await self._post("streaming.create_token")
        token = str(data.get("token") or "").strip()
        if not token:
            raise AvatarUnavailableError("avatar proxy returned no token")
        return token

    async def create_session(self, token: str) -> AvatarSessionInfo:
        data = await self._post(
            "streaming.new",
            {"version": "v2", "avatar_id": self.avatar_id, "quality": self.quality},
            token=token,
        )
        session_id = str(data.get("session_id") or "").strip()
        if not session_id:
            raise AvatarUnavailableError("avatar proxy returned no session id")
        return AvatarSessionInfo(
            url=str(data.get("url") or ""),
            access_token=str(data.get("access_token") or ""),
            session_id=session_id,
        )

    async def start_session(self, token: str, session_id: str) -> None:
        await self._post("streaming.start", {"session_id": session_id}, token=token)

    async def send_task(self, token: str, session_id: str, text: str, task_type: str = "repeat") -> None:
        await self._post(
            "streaming.task",
            {"session_id": session_id, "text": text, "task_type": task_type},
            token=token,
        )

    async def stop_session(self, token: str, session_id: str) -> None:
        await self._post("streaming.stop", {"session_id": session_id}, token=token)


class AvatarSession:
    """
    Avatar participation for one interview.

    readiness moves NOT_REQUESTED -> AWAITING_READY -> READY and only goes
    back to NOT_REQUESTED on stop(). A failed establish() leaves the session
    marked unavailable for the rest of the interview.
    """

    def __init__(self, client: AvatarProxyClient, interview_id: str = ""):
        self.client = client
        self.interview_id = interview_id
        self.readiness = AvatarReadiness.NOT_REQUESTED
        self.unavailable = False
        self.info: AvatarSessionInfo | None = None
        self._token: str | None = None

    def is_ready(self) -> bool:
        return self.readiness is AvatarReadiness.READY

    async def establish(self) -> AvatarSessionInfo:
        if self.readiness is not AvatarReadiness.NOT_REQUESTED:
            raise RuntimeError(f"avatar session already {self.readiness.value}")

        self.readiness = AvatarReadiness.AWAITING_READY
        try:
            self._token = await self.client.create_token()
            self.info = await self.client.create_session(self._token)
            await self.client.start_session(self._token, self.info.session_id)
        except (httpx.HTTPError, ValueError, AvatarUnavailableError) as exc:
            self.unavailable = True
            log_event("avatar", "establish_failed", self.interview_id, error=type(exc).__name__)
            raise AvatarUnavailableError("avatar session could not be established") from exc

        self.readiness = AvatarReadiness.READY
        log_event("avatar", "ready", self.interview_id, avatar_session_id=self.info.session_id)
        return self.info

    async def speak(self, text: str, task_type: str = "repeat") -> None:
        if not self.is_ready() or self.info is None or not self._token:
            raise AvatarUnavailableError("avatar session not ready")
        await self.client.send_task(self._token, self.info.session_id, text, task_type=task_type)

    async def stop(self) -> None:
        token, info = self._token, self.info
        self.readiness = AvatarReadiness.NOT_REQUESTED
        self._token = None
        self.info = None
        if not token or info is None:
            return
        try:
            await self.client.stop_session(token, info.session_id)
            log_event("avatar", "stopped", self.interview_id)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Avatar stop failed; ignoring: %s", exc)
