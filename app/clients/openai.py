"""OpenAI API client for text completion and image generation.

Implements:
- Rate limiting via AsyncLimiter (requests per minute, shared by both endpoints)
- Error classification via app.clients.http (429/5xx/timeouts are transient)
- Payload validation: a response without the expected field is terminal

No retry loop lives here; the Step Orchestrator retries the whole step.

Usage:
    client = OpenAIClient()
    summary = await client.complete_text(SYSTEM_PROMPT, transcript)
    image_url = await client.generate_image("a neon city at night")
    await client.close()
"""

from typing import Any

import httpx
from aiolimiter import AsyncLimiter

from app.clients.http import DEFAULT_TIMEOUT_SECONDS, send
from app.config import get_openai_api_key, get_openai_image_model, get_openai_text_model
from app.exceptions import TerminalWorkflowError
from app.utils.logging import get_logger

log = get_logger(__name__)

SERVICE_NAME = "openai"
IMAGE_SIZE = "1792x1024"
IMAGE_TIMEOUT_SECONDS = 120.0


class OpenAIClient:
    """Generative text/image client.

    Attributes:
        base_url: OpenAI REST API root
        client: Async HTTP client
        rate_limiter: Requests-per-minute limiter shared by both endpoints
        text_model / image_model: Model names (from config by default)
    """

    def __init__(
        self,
        api_key: str | None = None,
        text_model: str | None = None,
        image_model: str | None = None,
        requests_per_minute: int = 60,
    ):
        self.api_key = api_key or get_openai_api_key()
        self.text_model = text_model or get_openai_text_model()
        self.image_model = image_model or get_openai_image_model()
        self.base_url = "https://api.openai.com/v1"
        self.client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS)
        self.rate_limiter = AsyncLimiter(max_rate=requests_per_minute, time_period=60)

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def complete_text(self, system_prompt: str, user_content: str) -> str:
        """Run a chat completion and return the assistant text.

        Returns:
            The message content, stripped. May be empty; callers decide
            whether an empty completion falls back or fails.

        Raises:
            TransientExternalError: Timeout, 429, 5xx
            ExternalServiceError: Other 4xx
            TerminalWorkflowError: Response carries no choices
        """
        async with self.rate_limiter:
            response = await send(
                SERVICE_NAME,
                self.client.post(
                    f"{self.base_url}/chat/completions",
                    headers=self._get_headers(),
                    json={
                        "model": self.text_model,
                        "messages": [
                            {"role": "system", "content": system_prompt},
                            {"role": "user", "content": user_content},
                        ],
                    },
                ),
            )

        payload: dict[str, Any] = response.json()
        choices = payload.get("choices") or []
        if not choices:
            raise TerminalWorkflowError("Text completion returned no choices")

        content = (choices[0].get("message") or {}).get("content") or ""
        log.info("openai_completion_success", model=self.text_model, length=len(content))
        return content.strip()

    async def generate_image(self, prompt: str) -> str:
        """Generate one image and return its temporary public URL.

        Raises:
            TransientExternalError: Timeout, 429, 5xx
            ExternalServiceError: Other 4xx (e.g. prompt rejected)
            TerminalWorkflowError: Response carries no image URL
        """
        async with self.rate_limiter:
            response = await send(
                SERVICE_NAME,
                self.client.post(
                    f"{self.base_url}/images/generations",
                    headers=self._get_headers(),
                    json={
                        "model": self.image_model,
                        "prompt": prompt,
                        "n": 1,
                        "size": IMAGE_SIZE,
                        "response_format": "url",
                    },
                    timeout=IMAGE_TIMEOUT_SECONDS,
                ),
            )

        data = response.json().get("data") or []
        url = data[0].get("url") if data else None
        if not url:
            raise TerminalWorkflowError("Image generation returned no URL")

        log.info("openai_image_success", model=self.image_model)
        return url

    async def close(self) -> None:
        await self.client.aclose()
