"""Single-shot recognizer client."""

import logging
from dataclasses import dataclass

import httpx

from facial_attendance.services.transport import SingleShotRecognizer

_logger = logging.getLogger(__name__)


@dataclass
class HttpxRecognitionClient(SingleShotRecognizer):
    """Recognizer client implemented with httpx."""

    base_url: str
    token: str
    http_client: httpx.AsyncClient
    timeout: float = 10.0

    @classmethod
    def create(
        cls, base_url: str, token: str, timeout: float = 10.0
    ) -> "HttpxRecognitionClient":
        """Create a recognizer client with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            token=token,
            http_client=httpx.AsyncClient(),
            timeout=timeout,
        )

    async def check_available(self) -> bool:
        """Probe the recognizer health endpoint."""
        try:
            response = await self.http_client.get(
                f"{self.base_url}/health",
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.HTTPError as exc:
            _logger.warning("Recognizer health probe failed: %s", exc)
            return False
        return response.is_success

    async def recognize(self, course_id: str, frame_data: str) -> dict[str, object]:
        """Submit one frame for recognition."""
        response = await self.http_client.post(
            f"{self.base_url}/recognition/frame",
            params={"course_id": course_id},
            json={"frame_data": frame_data},
            headers=self._headers(),
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}
