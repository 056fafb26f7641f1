"""Analysis requests and the Gemini client.

The analyzer is treated as a black box: an ordered list of text and image
parts goes in, text (plus optional token usage) comes out.
"""

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import httpx
from loguru import logger

from .config import GeminiConfig
from .error_handling import AnalysisError, RetryPolicy, TransientAnalysisError
from .models import Tier


@dataclass
class ImagePart:
    data: bytes
    mime_type: str = "image/jpeg"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inline_data": {
                "mime_type": self.mime_type,
                "data": base64.b64encode(self.data).decode("ascii"),
            }
        }


Part = Union[str, ImagePart]


@dataclass
class AnalysisRequest:
    """Ordered prompt parts for one tier execution."""
    tier: Tier
    parts: List[Part] = field(default_factory=list)

    @property
    def text_parts(self) -> List[str]:
        return [p for p in self.parts if isinstance(p, str)]

    @property
    def image_count(self) -> int:
        return sum(1 for p in self.parts if isinstance(p, ImagePart))

    def to_contents(self) -> List[Dict[str, Any]]:
        parts = [{"text": p} if isinstance(p, str) else p.to_dict() for p in self.parts]
        return [{"role": "user", "parts": parts}]


@dataclass
class AnalysisResult:
    text: str
    usage: Optional[Dict[str, Any]] = None


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("retry-after")
    try:
        return float(value) if value else None
    except ValueError:
        return None


class GeminiAnalyzer:
    """Calls the Gemini ``generateContent`` REST endpoint."""

    def __init__(
        self,
        api_key: str,
        model: str,
        endpoint: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 120.0,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config: GeminiConfig, client: Optional[httpx.AsyncClient] = None) -> "GeminiAnalyzer":
        return cls(
            api_key=config.api_key or "",
            model=config.model,
            endpoint=config.endpoint,
            timeout=config.timeout,
            retry_policy=RetryPolicy(max_attempts=config.max_retries, base_delay=config.retry_delay),
            client=client,
        )

    @property
    def url(self) -> str:
        return f"{self.endpoint}/models/{self.model}:generateContent"

    async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
        """Run the request, retrying transient failures.

        Raises:
            AnalysisError: permanent failure or retries exhausted
        """
        return await self.retry_policy.execute(self._generate, request)

    async def _generate(self, request: AnalysisRequest) -> AnalysisResult:
        logger.debug(
            f"{request.tier.tag} Gemini request: {len(request.text_parts)} text parts, "
            f"{request.image_count} images"
        )
        try:
            response = await self._client.post(
                self.url,
                json={"contents": request.to_contents()},
                headers={"x-goog-api-key": self.api_key},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientAnalysisError(f"Gemini request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientAnalysisError(f"Gemini transport error: {e}") from e

        if response.status_code == 429:
            raise TransientAnalysisError("Gemini rate limit exceeded", retry_after=_retry_after(response))
        if response.status_code >= 500:
            raise TransientAnalysisError(f"Gemini server error {response.status_code}")
        if response.status_code >= 400:
            raise AnalysisError(f"Gemini rejected request ({response.status_code}): {response.text[:200]}")

        try:
            data = response.json()
        except ValueError as e:
            raise TransientAnalysisError(f"Gemini returned malformed JSON: {e}") from e

        text = self._extract_text(data)
        if not text.strip():
            raise TransientAnalysisError("Gemini returned an empty response")

        logger.debug(f"{request.tier.tag} Gemini response: {len(text)} chars")
        return AnalysisResult(text=text, usage=data.get("usageMetadata"))

    def _extract_text(self, data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(
            part.get("text", "") for part in parts
            if isinstance(part, dict) and not part.get("thought")
        )

    async def close(self) -> None:
        await self._client.aclose()
