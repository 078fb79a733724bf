import time
from typing import Optional

import httpx
from loguru import logger

from core.errors import ConfigurationError, ContractViolation, TransportError
from llm.base import BaseLLM, Reply, parse_reply
from llm.prompts import Prompt


class ChatCompletionsLLM(BaseLLM):
    """Client for any OpenAI-compatible chat/completions endpoint.

    Requests JSON mode so the content is a {"reply_text", "emotion_id"}
    object. One POST per turn, no retries.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str,
        temperature: float = 0.7,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _ensure_client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

    def check_configured(self) -> None:
        if not self.api_key:
            raise ConfigurationError("LLM API key is not configured.")
        if not self.base_url:
            raise ConfigurationError("LLM base URL is not configured.")
        if not self.model:
            raise ConfigurationError("LLM model name is not configured.")

    def build_request(self, prompt: Prompt) -> dict:
        return {
            "model": self.model,
            "messages": prompt.as_messages(),
            "temperature": self.temperature,
            "response_format": {"type": "json_object"},
        }

    async def complete(self, prompt: Prompt) -> Reply:
        self.check_configured()
        self._ensure_client()

        t0 = time.monotonic()
        try:
            response = await self._client.post(
                self.base_url,
                json=self.build_request(prompt),
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"LLM request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise TransportError(f"LLM request failed: {e}") from e

        logger.info("[TIMING] LLM call: {:.1f}s", time.monotonic() - t0)

        if not response.is_success:
            logger.error("[LLM] HTTP error {}: {}", response.status_code, response.text[:500])
            raise TransportError(
                f"LLM returned HTTP {response.status_code}", status_code=response.status_code
            )

        content = self._extract_content(response)
        logger.debug("[LLM] Raw content: {}", content)
        return parse_reply(content)

    @staticmethod
    def _extract_content(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError as e:
            raise ContractViolation("LLM response is not JSON.") from e

        choices = body.get("choices") if isinstance(body, dict) else None
        if not isinstance(choices, list) or not choices:
            raise ContractViolation("No choices list in LLM response.")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ContractViolation("LLM content is empty.")
        return content

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
