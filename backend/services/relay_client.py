"""HTTP client for the AVAS relay API."""
import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence

import httpx

from models.conversation import Turn
from services.errors import NetworkError, UpstreamError

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> str:
    """Error detail from a relay error envelope: detail, else error, else unknown_error."""
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        return data.get("detail") or data.get("error") or "unknown_error"
    return "unknown_error"


class RelayClient:
    """Wrapper around httpx for the relay's /chat, /health and /models routes."""

    def __init__(
        self,
        base_url: str = "http://localhost:3001",
        timeout: Optional[float] = None,
        client: Optional[httpx.Client] = None
    ):
        """
        Initialize the relay client.

        Args:
            base_url: Relay base URL
            timeout: Request timeout in seconds; None waits indefinitely
            client: Existing httpx client (e.g. a test client) to send requests with
        """
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.Client(timeout=timeout)

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    @staticmethod
    def _payload(messages: Sequence[Turn], model: Optional[str], stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "messages": [turn.to_dict() for turn in messages],
            "stream": stream
        }
        if model:
            payload["model"] = model
        return payload

    def _get(self, path: str) -> Dict[str, Any]:
        try:
            response = self.client.get(self._url(path))
        except httpx.TransportError as e:
            raise NetworkError(str(e)) from e
        if not response.is_success:
            raise UpstreamError(_error_detail(response), hint=None, status_code=response.status_code)
        return response.json()

    def health(self) -> Dict[str, Any]:
        return self._get("/health")

    def list_models(self) -> List[Dict[str, str]]:
        return self._get("/models").get("models", [])

    def complete(self, messages: Sequence[Turn], model: Optional[str] = None) -> Optional[str]:
        """
        Non-streamed chat request.

        Returns:
            The reply's message text, or None when the relay sent none

        Raises:
            NetworkError: If the relay cannot be reached
            UpstreamError: On a non-2xx response
        """
        try:
            response = self.client.post(self._url("/chat"), json=self._payload(messages, model, False))
        except httpx.TransportError as e:
            logger.error(f"Relay unreachable at {self.base_url}: {e}")
            raise NetworkError(str(e)) from e

        if not response.is_success:
            raise UpstreamError(_error_detail(response), hint=None, status_code=response.status_code)
        return response.json().get("message")

    def stream_chat(self, messages: Sequence[Turn], model: Optional[str] = None) -> Iterator[bytes]:
        """
        Streamed chat request yielding raw body chunks as they arrive.

        Closing the iterator closes the response, which aborts the connection.

        Raises:
            NetworkError: If the relay cannot be reached or the connection drops
            UpstreamError: On a non-2xx response
        """
        try:
            with self.client.stream("POST", self._url("/chat"), json=self._payload(messages, model, True)) as response:
                if not response.is_success:
                    response.read()
                    raise UpstreamError(_error_detail(response), hint=None, status_code=response.status_code)
                for chunk in response.iter_bytes():
                    yield chunk
        except httpx.TransportError as e:
            logger.error(f"Relay stream failed at {self.base_url}: {e}")
            raise NetworkError(str(e)) from e

    def close(self) -> None:
        self.client.close()
