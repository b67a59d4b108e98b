"""Gemini REST client shared by the vision and voice services.

Calls ``models/{model}:generateContent`` in JSON response mode and returns
the parsed JSON of the first candidate. Failures surface as
CollaboratorError; quota exhaustion as RateLimitedError with the retry
delay the API suggested, when it suggested one.
"""
import base64
import json
import logging
import re
from typing import Any, Optional

import httpx

from cartops.core.config import settings
from cartops.core.exceptions import CollaboratorError, RateLimitedError

logger = logging.getLogger(__name__)


_RETRY_IN_RE = re.compile(r"retry in ([\d.]+)s", re.IGNORECASE)
_RETRY_DELAY_RE = re.compile(r'"retryDelay"\s*:\s*"([\d.]+)s"')


def strip_code_fences(text: str) -> str:
    """Remove ```json ... ``` wrappers the model sometimes adds."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = re.sub(r"^```(?:json)?\s*", "", cleaned)
        cleaned = re.sub(r"\s*```$", "", cleaned)
    return cleaned.strip()


def parse_retry_after(message: str) -> Optional[float]:
    """Seconds from a "retry in 12.5s" hint or a retryDelay field."""
    for pattern in (_RETRY_IN_RE, _RETRY_DELAY_RE):
        match = pattern.search(message or "")
        if match:
            try:
                return float(match.group(1))
            except ValueError:
                return None
    return None


class GeminiClient:
    """Thin async wrapper over the Gemini generateContent endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.base_url = (base_url or settings.GEMINI_API_URL).rstrip("/")
        self.timeout = timeout or settings.GEMINI_TIMEOUT_SECONDS
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def generate_json(
        self,
        model: str,
        prompt: str,
        image: Optional[bytes] = None,
        mime_type: str = "image/jpeg",
        temperature: float = 0.1,
    ) -> Any:
        """
        Run one prompt (optionally with an image) and return parsed JSON.

        Raises:
            RateLimitedError: HTTP 429 or a quota message
            CollaboratorError: transport, HTTP or JSON failure
        """
        parts: list[dict[str, Any]] = [{"text": prompt}]
        if image is not None:
            parts.append({
                "inline_data": {
                    "mime_type": mime_type,
                    "data": base64.b64encode(image).decode("utf-8"),
                }
            })

        body = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": temperature,
                "responseMimeType": "application/json",
            },
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/models/{model}:generateContent",
                    headers={
                        "x-goog-api-key": self.api_key or "",
                        "Content-Type": "application/json",
                    },
                    json=body,
                )
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {e}")
            raise CollaboratorError(f"Gemini request failed: {e}") from e

        if response.status_code == 429 or (
            response.status_code >= 400 and "quota" in response.text.lower()
        ):
            retry_after = parse_retry_after(response.text)
            logger.warning(f"Gemini rate limited (retry after {retry_after}s)")
            raise RateLimitedError("Gemini quota exceeded", retry_after_seconds=retry_after)

        if response.status_code >= 400:
            logger.error(f"Gemini returned HTTP {response.status_code}: {response.text[:200]}")
            raise CollaboratorError(f"Gemini returned HTTP {response.status_code}")

        try:
            data = response.json()
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.error(f"Unexpected Gemini response shape: {e}")
            raise CollaboratorError("Gemini response had no candidate text") from e

        try:
            return json.loads(strip_code_fences(text))
        except json.JSONDecodeError as e:
            logger.error(f"Gemini returned non-JSON text: {text[:200]}")
            raise CollaboratorError("Gemini response was not valid JSON") from e
