"""Resilient client for the Gemini extraction service.

Retry/backoff is modeled as plain values (`RetryPolicy`, `BackoffState`) so the
wait sequence can be tested without sleeping. Sleep and randomness are
injected into `ResilientExtractionClient`.

Classification:
- retryable: HTTP 429 / 503, or a message that mentions rate limiting,
  overload or unavailability
- fatal: everything else (auth, malformed request, safety rejection, ...)
"""

from __future__ import annotations

import random
import re
import threading
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterator

from google import genai
from google.genai import types

from logging_utils import get_logger
from utils.errors import ExtractionError, ExtractionErrorKind

logger = get_logger(__name__)


RETRY_INFO_TYPE = "type.googleapis.com/google.rpc.RetryInfo"

_RATE_LIMIT_MARKERS = ("rate limit", "resource exhausted", "resource_exhausted", "429")
_UNAVAILABLE_MARKERS = ("overloaded", "service unavailable")
_CONTENT_REJECTED_MARKERS = ("safety", "blocked")
_RETRY_DELAY_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)s\s*$")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    initial_delay: float = 3.0
    max_backoff: float = 60.0
    jitter_with_suggestion: float = 1.0
    jitter_without_suggestion: float = 3.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay < 0 or self.max_backoff < 0:
            raise ValueError("delays must be >= 0")
        if not 0 <= self.jitter_with_suggestion <= self.jitter_without_suggestion:
            raise ValueError(
                "jitter_with_suggestion must be between 0 and jitter_without_suggestion"
            )

    @property
    def max_jitter(self) -> float:
        return self.jitter_without_suggestion


@dataclass(frozen=True)
class BackoffState:
    attempt: int
    current_delay: float

    @classmethod
    def initial(cls, policy: RetryPolicy) -> "BackoffState":
        return cls(attempt=0, current_delay=policy.initial_delay)


def next_wait(
    state: BackoffState,
    policy: RetryPolicy,
    suggested_delay: float | None,
    uniform: Callable[[float, float], float],
) -> tuple[float, BackoffState]:
    """Return (seconds to sleep, state for the next attempt).

    A positive service-suggested delay is honored (capped at `max_backoff`) and
    resets the backoff; otherwise the current backoff is used and then doubled up to the cap.
    """

    if suggested_delay is not None and suggested_delay > 0:
        base = min(suggested_delay, policy.max_backoff)
        jitter = uniform(0.0, policy.jitter_with_suggestion)
        next_delay = policy.initial_delay
    else:
        base = min(state.current_delay, policy.max_backoff)
        jitter = uniform(0.0, policy.jitter_without_suggestion)
        next_delay = min(state.current_delay * 2, policy.max_backoff)

    return base + jitter, BackoffState(attempt=state.attempt + 1, current_delay=next_delay)


def _status_code(exc: BaseException) -> int | None:
    for attr in ("code", "status_code"):
        v = getattr(exc, attr, None)
        if isinstance(v, int) and not isinstance(v, bool):
            return v
    return None


def classify_error(exc: BaseException) -> ExtractionErrorKind:
    status = _status_code(exc)
    message = str(exc).lower()

    if status == 429 or any(m in message for m in _RATE_LIMIT_MARKERS):
        return ExtractionErrorKind.RATE_LIMITED
    if status == 503 or any(m in message for m in _UNAVAILABLE_MARKERS):
        return ExtractionErrorKind.SERVICE_UNAVAILABLE
    if status in (401, 403):
        return ExtractionErrorKind.AUTHORIZATION
    if any(m in message for m in _CONTENT_REJECTED_MARKERS):
        return ExtractionErrorKind.CONTENT_REJECTED
    if status in (400, 404, 422):
        return ExtractionErrorKind.MALFORMED_REQUEST
    return ExtractionErrorKind.SERVICE_ERROR


def _iter_error_details(exc: BaseException) -> Iterator[dict]:
    # google.genai APIError keeps the response body in `.details`:
    #   {"error": {"code": 429, "details": [{"@type": ..., "retryDelay": "3s"}]}}
    details: Any = getattr(exc, "details", None)
    if isinstance(details, dict):
        inner = details.get("error", details)
        details = inner.get("details") if isinstance(inner, dict) else None
    if isinstance(details, list):
        for item in details:
            if isinstance(item, dict):
                yield item


def parse_retry_delay(value: Any) -> float | None:
    """Parse a RetryInfo `retryDelay` ({seconds, nanos} or "3s") into seconds."""

    if isinstance(value, dict):
        try:
            seconds = float(value.get("seconds") or 0)
            nanos = float(value.get("nanos") or 0)
        except (TypeError, ValueError):
            return None
        return seconds + nanos / 1e9
    if isinstance(value, str):
        m = _RETRY_DELAY_RE.match(value)
        if m:
            return float(m.group(1))
    return None


def suggested_delay_seconds(exc: BaseException) -> float | None:
    for item in _iter_error_details(exc):
        if item.get("@type") == RETRY_INFO_TYPE:
            return parse_retry_delay(item.get("retryDelay"))
    return None


class GeminiTransport:
    """One `generate_content` call with a JSON response schema."""

    def __init__(
        self,
        *,
        model: str,
        api_key: str | None = None,
        client: Any = None,
    ) -> None:
        if client is None:
            if not api_key:
                raise ExtractionError(
                    "GEMINI_API_KEY is not set",
                    kind=ExtractionErrorKind.AUTHORIZATION,
                )
            client = genai.Client(api_key=api_key)
        self._client = client
        self._model = model

    @staticmethod
    def _content_part(content: Any) -> types.Part:
        if content.mime_type.startswith("text/"):
            return types.Part.from_text(text=content.data.decode("utf-8", errors="replace"))
        return types.Part.from_bytes(data=content.data, mime_type=content.mime_type)

    def generate(self, prompt: str, content: Any, schema: dict) -> str:
        response = self._client.models.generate_content(
            model=self._model,
            contents=[prompt, self._content_part(content)],
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=schema,
            ),
        )

        feedback = getattr(response, "prompt_feedback", None)
        block_reason = getattr(feedback, "block_reason", None)
        if block_reason:
            raise ExtractionError(
                f"Request blocked by the extraction service: {block_reason}",
                kind=ExtractionErrorKind.CONTENT_REJECTED,
            )

        text = getattr(response, "text", None)
        if not text:
            raise ExtractionError(
                "Empty response from extraction service",
                kind=ExtractionErrorKind.SERVICE_ERROR,
            )
        return text


class ResilientExtractionClient:
    """Extraction calls with classification, backoff and a global call limiter.

    Safe to share across threads: the only mutable state is the semaphore and
    the RNG.
    """

    def __init__(
        self,
        transport: Any,
        *,
        policy: RetryPolicy | None = None,
        max_concurrent_calls: int = 15,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if max_concurrent_calls < 1:
            raise ValueError("max_concurrent_calls must be >= 1")
        self._transport = transport
        self._policy = policy or RetryPolicy()
        self._limiter = threading.BoundedSemaphore(max_concurrent_calls)
        self._sleep = sleep
        self._rng = rng or random.Random()

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def extract(
        self,
        prompt: str,
        content: Any,
        *,
        identifier: str,
        schema: dict,
        max_attempts: int | None = None,
        initial_delay: float | None = None,
    ) -> str:
        """Return the service's raw text for one document.

        Raises:
            ExtractionError: fatal failure, or retry budget exhausted
                (`is_retry_exhaustion=True`).
        """

        policy = self._policy
        if max_attempts is not None:
            policy = replace(policy, max_attempts=max_attempts)
        if initial_delay is not None:
            policy = replace(policy, initial_delay=initial_delay)

        state = BackoffState.initial(policy)

        while True:
            try:
                with self._limiter:
                    return self._transport.generate(prompt, content, schema)
            except ExtractionError:
                raise
            except Exception as exc:  # SDK / transport errors
                kind = classify_error(exc)
                status = _status_code(exc)
                calls_made = state.attempt + 1

                if not kind.retryable:
                    logger.error(
                        "Extraction failed (fatal) | id=%s kind=%s status=%s err=%s",
                        identifier,
                        kind.value,
                        status,
                        exc,
                    )
                    raise ExtractionError(
                        f"Extraction failed for {identifier}: {exc}",
                        kind=kind,
                        identifier=identifier,
                        status_code=status,
                    ) from exc

                if calls_made >= policy.max_attempts:
                    logger.error(
                        "Extraction retries exhausted | id=%s attempts=%s kind=%s status=%s err=%s",
                        identifier,
                        calls_made,
                        kind.value,
                        status,
                        exc,
                    )
                    raise ExtractionError(
                        f"Extraction for {identifier} still failing after {calls_made} attempts: {exc}",
                        kind=ExtractionErrorKind.RETRY_EXHAUSTED,
                        identifier=identifier,
                        status_code=status,
                        is_retry_exhaustion=True,
                        details={"last_kind": kind.value},
                    ) from exc

                suggested = suggested_delay_seconds(exc)
                wait, state = next_wait(state, policy, suggested, self._rng.uniform)
                logger.warning(
                    "Extraction retry | id=%s attempt=%s/%s kind=%s status=%s suggested=%s wait=%.2fs",
                    identifier,
                    calls_made,
                    policy.max_attempts,
                    kind.value,
                    status,
                    suggested,
                    wait,
                )
                self._sleep(wait)


def build_extraction_client(config: Any) -> ResilientExtractionClient:
    """Wire a Gemini-backed client from a `config.Config`."""

    transport = GeminiTransport(
        model=config.GEMINI_MODEL_NAME, api_key=config.GEMINI_API_KEY
    )
    return ResilientExtractionClient(
        transport,
        policy=config.retry_policy(),
        max_concurrent_calls=config.GEMINI_MAX_CONCURRENT_CALLS,
    )
