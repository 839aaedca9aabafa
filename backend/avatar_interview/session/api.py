import logging

import httpx

from avatar_interview.errors import SessionStartError
from avatar_interview.schemas import StartInterviewRequest, StartInterviewResponse
from core.config import INTERVIEW_API_BASE_URL

logger = logging.getLogger("session_api")


async def start_session(
    http_client: httpx.AsyncClient,
    details: StartInterviewRequest,
    base_url: str = INTERVIEW_API_BASE_URL,
) -> str:
    url = f"{str(base_url or '').rstrip('/')}/api/interview/start"
    try:
        response = await http_client.post(url, json=details.model_dump(by_alias=True))
        response.raise_for_status()
        data = StartInterviewResponse.model_validate(response.json())
    except (httpx.HTTPError, ValueError) as exc:
        logger.error("Interview start handshake failed: %s", exc)
        raise SessionStartError("interview session could not be started") from exc

    return data.session_id
