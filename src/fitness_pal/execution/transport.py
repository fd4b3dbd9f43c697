"""HTTP transport for generation streams.

Opens a POST request against the generation backend and yields the
response body as text chunks, exactly as they arrive. Every failure
(request setup, non-success status, body read) surfaces as a
``TransportError``.
"""

from typing import Any, AsyncIterator, Dict, Optional

import httpx

from fitness_pal.config.env_schema import EnvironmentConfig
from fitness_pal.utils.exceptions import TransportError
from fitness_pal.utils.logging import get_logger

logger = get_logger(__name__)


class StreamTransport:
    """Streams response bodies from the generation backend."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """Initialize the transport.

        Args:
            base_url: Backend base URL. Ignored when ``client`` is given.
            timeout: Connect and per-chunk read timeout in seconds.
            client: Pre-configured client, mainly for tests.
            headers: Extra headers sent with every request.
        """
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url or "",
            timeout=httpx.Timeout(timeout),
        )
        self.headers = {"Accept": "text/event-stream", **(headers or {})}

    @classmethod
    def from_environment(
        cls, env: Optional[EnvironmentConfig] = None
    ) -> "StreamTransport":
        env = env or EnvironmentConfig()
        return cls(base_url=env.api_base_url, timeout=env.request_timeout)

    async def stream(self, path: str, payload: Dict[str, Any]) -> AsyncIterator[str]:
        """POST ``payload`` to ``path`` and yield the body as text chunks.

        Callers that stop early should close the iterator (for example
        with ``contextlib.aclosing``) so the response is released at once.

        Raises:
            TransportError: On connection failure, non-success status,
                or a body read failure.
        """
        logger.debug(f"POST {path} (session_id={payload.get('session_id')})")
        try:
            async with self.client.stream(
                "POST", path, json=payload, headers=self.headers
            ) as response:
                if not response.is_success:
                    body = await response.aread()
                    text = body.decode("utf-8", errors="replace")[:500]
                    logger.error(
                        f"Generation backend returned HTTP {response.status_code} for {path}: {text}"
                    )
                    raise TransportError(
                        f"HTTP error: {response.status_code}",
                        status_code=response.status_code,
                        endpoint=path,
                        details={"body": text} if text else None,
                    )

                async for chunk in response.aiter_text():
                    yield chunk
        except httpx.HTTPError as e:
            raise TransportError(
                f"Stream request failed: {e}",
                endpoint=path,
                details={"error_type": type(e).__name__},
            ) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
