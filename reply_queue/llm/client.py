"""
OpenRouter completion API client with rate limiting and retry.

All outbound calls share one ``RateLimiterState`` held on the injected
``RuntimeContext``. Failures are classified into the ``ErrorKind`` taxonomy:

- 401/403: ``AuthError``, never retried
- 402, or an embedded error code 402: ``InsufficientBalanceError``, never retried
- 429: ``RateLimitError``, retried after ``Retry-After`` or a backoff delay
- 5xx: ``ServerError``, retried with exponential backoff
- transport failure: ``NetworkError``, retried with exponential backoff
- anything else unexpected: ``ProtocolError``, not retried
"""

from __future__ import annotations

from email.utils import parsedate_to_datetime
import json
import logging
import re
from typing import Any

import httpx

from ..config import CatalogConfig, LoggingConfig, ProviderConfig, RateLimitConfig
from ..core.context import MODEL_CACHE_KEY, RuntimeContext
from ..core.types import ModelDescriptor, ModelPricing
from ..errors import (
    ApiError,
    ApiResult,
    AuthError,
    InsufficientBalanceError,
    NetworkError,
    ProtocolError,
    RateLimitError,
    ServerError,
)
from ..logging_utils import log_event, redact_text, truncate_text
from .tracing import record_span_error, set_span_output, start_span

logger = logging.getLogger(__name__)


_TOKENS_RE = re.compile(r"requested up to (\d+) tokens.*can only afford (\d+)", re.DOTALL)
BALANCE_MESSAGE = "Insufficient OpenRouter credits. Please add credits to your account."


class OpenRouterClient:
    """Resilient client for the chat completion and model catalog endpoints."""

    def __init__(
        self,
        cfg: ProviderConfig,
        rate_cfg: RateLimitConfig,
        context: RuntimeContext,
        api_key: str | None,
        catalog_cfg: CatalogConfig | None = None,
        log_cfg: LoggingConfig | None = None,
        llm_logger: logging.Logger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.cfg = cfg
        self.rate_cfg = rate_cfg
        self.context = context
        self.api_key = api_key
        self.catalog_cfg = catalog_cfg or CatalogConfig()
        self.log_cfg = log_cfg or LoggingConfig()
        self.llm_logger = llm_logger
        self._transport = transport

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry ``attempt + 1``: base * 2**attempt, capped."""
        delay = self.rate_cfg.base_delay_seconds * (2**attempt)
        return min(delay, self.rate_cfg.max_delay_seconds)

    async def request(
        self,
        endpoint: str,
        payload: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> dict[str, Any]:
        """Call ``endpoint`` (POST with a payload, GET without) and return the JSON body.

        Raises:
            ApiError: One of the classified subclasses once the failure is
                terminal or retries are exhausted
        """
        if authenticated and not self.api_key:
            raise AuthError("Missing OpenRouter API key.")

        url = f"{self.cfg.base_url.rstrip('/')}{endpoint}"
        method = "POST" if payload is not None else "GET"
        state = self.context.rate_limiter
        clock = self.context.clock
        max_retries = self.rate_cfg.max_retries

        for attempt in range(max_retries + 1):
            waited_for_hint = False
            if state.retry_after_until is not None:
                wait = state.retry_after_until - clock.now()
                state.retry_after_until = None
                waited_for_hint = True
                if wait > 0:
                    logger.info("Rate limited, waiting %.1fs", wait)
                    await clock.sleep(wait)

            if attempt > 0 and not waited_for_hint:
                delay = self.backoff_delay(attempt - 1)
                logger.info("Retry attempt %d, waiting %.1fs", attempt, delay)
                await clock.sleep(delay)

            try:
                resp = await self._send(method, url, payload, authenticated)
            except httpx.TransportError as exc:
                state.consecutive_errors += 1
                if attempt < max_retries:
                    logger.warning("Network error, will retry: %s", exc)
                    continue
                raise NetworkError("Network error. Please check your internet connection.") from exc

            status = resp.status_code

            if status == 429:
                wait = _retry_after_seconds(resp.headers.get("Retry-After"), clock.now())
                if wait is None:
                    wait = self.backoff_delay(attempt)
                state.retry_after_until = clock.now() + wait
                state.consecutive_errors += 1
                if attempt < max_retries:
                    logger.warning("Rate limited (429), will retry after %.1fs", wait)
                    continue
                raise RateLimitError("Rate limit exceeded. Please try again later.", 429, retry_after=wait)

            if status == 401:
                raise AuthError("Invalid API key. Please check your OpenRouter API key.", 401)
            if status == 403:
                raise AuthError("Access denied. Your API key may not have access to this resource.", 403)

            if status == 402:
                logger.info("Detected 402 insufficient credits error")
                raise _balance_error(_error_message(_safe_json(resp)), 402)

            if status >= 500:
                state.consecutive_errors += 1
                if attempt < max_retries:
                    logger.warning("Server error (%d), will retry", status)
                    continue
                raise ServerError(f"OpenRouter server error ({status}). Please try again later.", status)

            if not 200 <= status < 300:
                body = _safe_json(resp)
                embedded = _embedded_error(body)
                if embedded is not None and _error_code(embedded) == 402:
                    raise _balance_error(_error_message(body), status)
                message = _error_message(body) or f"API request failed with status {status}"
                raise ProtocolError(message, status)

            data = _safe_json(resp)
            if not isinstance(data, dict):
                raise ProtocolError("Malformed response from OpenRouter: body is not a JSON object", status)

            embedded = _embedded_error(data)
            if embedded is not None:
                code = _error_code(embedded)
                if code == 402:
                    raise _balance_error(_error_message(data), code)
                if code in (401, 403):
                    raise AuthError(_error_message(data) or "Access denied.", code)
                raise ProtocolError(_error_message(data) or "OpenRouter returned an error", code or status)

            state.consecutive_errors = 0
            state.last_request_time = clock.now()
            return data

        raise ProtocolError("Maximum retries exceeded")

    async def try_request(
        self,
        endpoint: str,
        payload: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> ApiResult[dict[str, Any]]:
        """Like ``request`` but returns the classification instead of raising."""
        try:
            return ApiResult(value=await self.request(endpoint, payload, authenticated))
        except ApiError as exc:
            return ApiResult(error=exc)

    async def chat_completion(
        self,
        prompt: str,
        temperature: float,
        max_tokens: int,
        event: str = "chat_completion",
        model: str | None = None,
    ) -> str:
        """Send a single-message chat completion and return the reply text."""
        model = model or self.cfg.model
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        logger.info("Chat completion request with model: %s", model)
        with start_span(
            f"openrouter.{event}",
            kind="llm",
            input_value=prompt,
            attributes={"llm.model": model, "llm.provider": "openrouter"},
        ) as span:
            try:
                data = await self.request("/chat/completions", payload)
                content = _extract_text(data)
            except ApiError as exc:
                record_span_error(span, exc)
                self._log_llm_response(event, exc.kind.value, str(exc), prompt, model)
                raise
            set_span_output(span, content)

        usage = data.get("usage") or {}
        logger.info("Chat completion successful, tokens used: %s", usage.get("total_tokens", "unknown"))
        self._log_llm_response(event, "ok", content, prompt, model)
        return content

    async def try_chat_completion(
        self,
        prompt: str,
        temperature: float,
        max_tokens: int,
        event: str = "chat_completion",
    ) -> ApiResult[str]:
        try:
            return ApiResult(value=await self.chat_completion(prompt, temperature, max_tokens, event))
        except ApiError as exc:
            return ApiResult(error=exc)

    async def fetch_models(self, force_refresh: bool = False) -> list[ModelDescriptor]:
        """Return the model catalog, served from the in-memory cache when fresh."""
        cache = self.context.model_cache
        if not force_refresh:
            cached = cache.get(MODEL_CACHE_KEY)
            if cached is not None:
                remaining = cache.expires_in(MODEL_CACHE_KEY) or 0
                logger.info("Using cached models (expires in %d minutes)", round(remaining / 60))
                return list(cached)

        logger.info("Fetching available models")
        data = await self.request("/models", authenticated=False)
        raw_models = data.get("data")
        if not isinstance(raw_models, list):
            raise ProtocolError("Malformed model list: missing data array")

        recommended = set(self.catalog_cfg.recommended_models)
        models = [
            _to_descriptor(raw, recommended)
            for raw in raw_models
            if isinstance(raw, dict) and raw.get("id")
        ]
        cache.set(MODEL_CACHE_KEY, models)
        logger.info("Fetched %d models", len(models))
        return list(models)

    def clear_model_cache(self) -> None:
        self.context.model_cache.clear()

    async def _send(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None,
        authenticated: bool,
    ) -> httpx.Response:
        headers = {
            "Content-Type": "application/json",
            "HTTP-Referer": self.cfg.referer,
            "X-Title": self.cfg.title,
        }
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        async with httpx.AsyncClient(
            timeout=self.cfg.timeout_seconds,
            trust_env=self.cfg.trust_env,
            transport=self._transport,
        ) as client:
            return await client.request(method, url, headers=headers, json=payload)

    def _log_llm_response(self, event: str, status: str, content: str, prompt: str, model: str) -> None:
        if self.llm_logger is None:
            return
        redaction = self.log_cfg.llm_log_redaction
        payload = {
            "event": event,
            "status": status,
            "model": model,
            "raw_response": truncate_text(redact_text(content, redaction)),
        }
        if self.log_cfg.llm_log_detail == "prompt_response":
            payload["raw_prompt"] = truncate_text(redact_text(prompt, redaction))
        log_event(self.llm_logger, "LLM response", **payload)


def _extract_text(data: dict[str, Any]) -> str:
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ProtocolError("Malformed completion response: no choices")
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        raise ProtocolError("Malformed completion response: no message")
    content = message.get("content")
    return content if isinstance(content, str) else ""


def _safe_json(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def _embedded_error(body: Any) -> dict[str, Any] | None:
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"]
    return None


def _error_code(error: dict[str, Any]) -> int | None:
    try:
        return int(error.get("code"))
    except (TypeError, ValueError):
        return None


def _error_message(body: Any) -> str:
    embedded = _embedded_error(body)
    if embedded is None:
        return ""
    message = embedded.get("message")
    return message if isinstance(message, str) else ""


def _balance_error(provider_message: str, status_code: int | None) -> InsufficientBalanceError:
    requested = available = None
    match = _TOKENS_RE.search(provider_message or "")
    if match:
        requested = int(match.group(1))
        available = int(match.group(2))
    logger.info("Parsed tokens - requested: %s, available: %s", requested, available)
    return InsufficientBalanceError(
        BALANCE_MESSAGE,
        requested_tokens=requested,
        available_tokens=available,
        status_code=status_code,
    )


def _retry_after_seconds(value: str | None, now: float) -> float | None:
    """Parse a Retry-After header given as seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        return max(0.0, parsedate_to_datetime(value).timestamp() - now)
    except (TypeError, ValueError):
        return None


def _to_descriptor(raw: dict[str, Any], recommended: set[str]) -> ModelDescriptor:
    pricing = raw.get("pricing") or {}
    created = raw.get("created")
    return ModelDescriptor(
        id=raw["id"],
        display_name=raw.get("name") or raw["id"],
        context_length=int(raw.get("context_length") or 0),
        pricing=ModelPricing(
            prompt=_to_float(pricing.get("prompt")),
            completion=_to_float(pricing.get("completion")),
        ),
        released_at=float(created) if isinstance(created, (int, float)) and created else None,
        is_recommended=raw["id"] in recommended,
        description=raw.get("description"),
    )


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
