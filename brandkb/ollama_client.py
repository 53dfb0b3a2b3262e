"""Ollama embedding client wrapper with error handling."""
from typing import Any, Dict, List, Optional

import httpx
import structlog

from brandkb import config

logger = structlog.get_logger()


class OllamaClient:
    """Async client for the Ollama embedding API."""

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.PROVIDER_TIMEOUT)
            transport: Optional httpx transport, mainly for tests
        """
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.timeout = timeout or config.PROVIDER_TIMEOUT
        self.transport = transport

    def _client(self, timeout: float = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            transport=self.transport,
        )

    async def embed(self, inputs: List[str], model: str = None) -> Dict[str, Any]:
        """Generate embeddings for a batch of inputs.

        Args:
            inputs: Texts to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            Response dict with 'embeddings' (one list per input) and
            'prompt_eval_count'

        Raises:
            httpx.HTTPError: On API errors
        """
        model = model or config.EMBEDDING_MODEL

        payload = {
            "model": model,
            "input": inputs,
        }

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embed_request",
                    model=model,
                    input_count=len(inputs),
                )

                response = await client.post(
                    f"{self.base_url}/api/embed",
                    json=payload,
                )
                response.raise_for_status()

                data = response.json()

                logger.debug(
                    "ollama_embed_response",
                    model=model,
                    embedding_count=len(data.get("embeddings", [])),
                    prompt_eval_count=data.get("prompt_eval_count"),
                )

                return data

        except httpx.ConnectError as e:
            logger.error("ollama_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error(
                "ollama_embed_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise
