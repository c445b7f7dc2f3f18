# Chat-completion client: request shaping, error mapping and response clean-up
from __future__ import annotations
from typing import Optional
import logging
import re

from openai import (
    OpenAI,
    APIConnectionError,
    APIError,
    APIResponseValidationError,
    APIStatusError,
    APITimeoutError,
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
)

import config
from errors import (
    AIAccessDeniedError,
    AIAuthError,
    AIMalformedResponseError,
    AINetworkError,
    AIQuotaError,
    AIRateLimitError,
    AIServerError,
    AIServiceError,
    AITimeoutError,
    AIUsageLimitError,
)

logger = logging.getLogger(__name__)

_EMOJI = re.compile(
    "["
    "\U0001F600-\U0001F64F"
    "\U0001F300-\U0001F5FF"
    "\U0001F680-\U0001F6FF"
    "\U0001F1E0-\U0001F1FF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "\U0001F900-\U0001F9FF"
    "\U0001FA70-\U0001FAFF"
    "]"
)


def clean_response(text: str) -> str:
    """Strip markdown emphasis, headings, emoji and bullets from model output."""
    text = re.sub(r"\*\*(.*?)\*\*", r"\1", text or "")
    text = re.sub(r"\*(.*?)\*", r"\1", text)
    text = re.sub(r"#{1,6}\s*", "", text)
    text = _EMOJI.sub("", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"^\s*[•\-\*]\s*", "", text, flags=re.MULTILINE)
    return text.strip()


def _error_code(exc: APIStatusError) -> str:
    code = getattr(exc, "code", None)
    if code:
        return str(code)
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        inner = body.get("error") if isinstance(body.get("error"), dict) else body
        return str(inner.get("code") or inner.get("type") or "")
    return ""


def map_openai_error(exc: Exception) -> AIServiceError:
    """Translate an openai SDK exception into the service's AI error taxonomy."""
    # APITimeoutError subclasses APIConnectionError, so it is checked first
    if isinstance(exc, APITimeoutError):
        return AITimeoutError()
    if isinstance(exc, APIConnectionError):
        return AINetworkError()
    if isinstance(exc, AuthenticationError):
        return AIAuthError()
    if isinstance(exc, PermissionDeniedError):
        return AIAccessDeniedError()
    if isinstance(exc, RateLimitError):
        code = _error_code(exc)
        if "insufficient_quota" in code:
            return AIQuotaError()
        if "rate_limit_exceeded" in code:
            return AIRateLimitError()
        return AIUsageLimitError()
    if isinstance(exc, APIStatusError):
        if exc.status_code == 401:
            return AIAuthError()
        if exc.status_code == 403:
            return AIAccessDeniedError()
        if exc.status_code == 429:
            return AIUsageLimitError()
        if exc.status_code >= 500:
            return AIServerError()
        return AIServiceError(f"Error de OpenAI: {exc.status_code}")
    if isinstance(exc, APIResponseValidationError):
        return AIMalformedResponseError()
    return AIServiceError()


class AIClient:
    """Thin wrapper over the OpenAI chat completions endpoint.

    Args:
        api_key: OpenAI key; an empty key makes every call raise AIAuthError.
        model: Chat model name.
        timeout: Per-request timeout in seconds.
        max_tokens: Completion token cap.
        temperature: Sampling temperature.
    """

    def __init__(
        self,
        api_key: str = config.OPENAI_API_KEY,
        model: str = config.LLM_MODEL,
        timeout: float = config.AI_TIMEOUT_SECONDS,
        max_tokens: int = config.LLM_MAX_TOKENS,
        temperature: float = config.LLM_TEMPERATURE,
    ):
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client: Optional[OpenAI] = None
        if api_key:
            self._client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    def generate(self, messages: list[dict]) -> str:
        """Send a chat message list and return the cleaned reply text.

        Raises:
            AIServiceError: A subclass naming the failure (auth, quota, timeout, ...).
        """
        if not self._client:
            raise AIAuthError()
        try:
            resp = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                timeout=self.timeout,
            )
        except APIError as exc:
            mapped = map_openai_error(exc)
            logger.warning("AI request failed: %s (%s)", type(mapped).__name__, exc)
            raise mapped from exc

        if not resp.choices:
            raise AIMalformedResponseError()
        content = resp.choices[0].message.content
        if not content or not content.strip():
            raise AIMalformedResponseError()
        return clean_response(content)


_default_client: Optional[AIClient] = None


def get_ai_client() -> AIClient:
    global _default_client
    if _default_client is None:
        _default_client = AIClient()
    return _default_client
