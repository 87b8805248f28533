from __future__ import annotations

import base64
import enum
import json
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import ValidationError

from receipt_filer.core.config import Settings
from receipt_filer.core.credentials import CredentialError, TokenProvider
from receipt_filer.core.errors import FailureKind, FilingError
from receipt_filer.core.logging import get_logger, log_event, monotonic_ms
from receipt_filer.modules.extraction.schemas import Category, ExtractedMetadata

logger = get_logger(__name__)

DEFAULT_LOCATION = "us-central1"

EXTRACTION_PROMPT = (
    "Analyze this receipt image and return JSON.\n"
    "keys:\n"
    "- date: YYYY-MM-DD (today if unknown)\n"
    "- amount: number\n"
    "- vendor: store name (short)\n"
    "- category: pick the best match from ["
    + ", ".join(c.value for c in Category)
    + "]"
)


class ExtractionFailure(FilingError):
    def __init__(
        self,
        kind: FailureKind,
        detail: str,
        *,
        status_code: int | None = None,
        location: str | None = None,
    ):
        super().__init__(detail)
        self.kind = kind
        self.status_code = status_code
        self.location = location


def _default_backoff(attempt_index: int) -> float:
    return 0.8 * (attempt_index + 1)


def dedupe_locations(
    locations: Iterable[str | None], *, default: str = DEFAULT_LOCATION
) -> tuple[str, ...]:
    out: list[str] = []
    for loc in [*locations, default]:
        loc = (loc or "").strip()
        if loc and loc not in out:
            out.append(loc)
    return tuple(out)


@dataclass(frozen=True)
class RetryPlan:
    locations: tuple[str, ...]
    max_attempts: int = 2
    backoff: Callable[[int], float] = _default_backoff

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        object.__setattr__(self, "locations", dedupe_locations(self.locations))

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPlan:
        fallbacks = (settings.google_location_fallback or "").split(",")
        base = float(settings.extraction_backoff_seconds)
        return cls(
            locations=(settings.google_location, *fallbacks),
            max_attempts=int(settings.extraction_max_attempts),
            backoff=lambda attempt_index: base * (attempt_index + 1),
        )


class Action(str, enum.Enum):
    SEND = "send"
    BACKOFF = "backoff"
    EXHAUSTED = "exhausted"


@dataclass
class FailoverState:
    """Walks (attempt x location). Only rate limits move the state forward."""

    plan: RetryPlan
    attempt: int = 0
    location_index: int = 0
    last_rate_limit_body: str | None = None
    history: list[tuple[int, str]] = field(default_factory=list)

    @property
    def location(self) -> str:
        return self.plan.locations[self.location_index]

    def record_send(self) -> None:
        self.history.append((self.attempt, self.location))

    def on_rate_limited(self, body: str) -> Action:
        self.last_rate_limit_body = body
        if self.location_index + 1 < len(self.plan.locations):
            self.location_index += 1
            return Action.SEND
        if self.attempt + 1 < self.plan.max_attempts:
            return Action.BACKOFF
        return Action.EXHAUSTED

    def start_next_attempt(self) -> float:
        delay = float(self.plan.backoff(self.attempt))
        self.attempt += 1
        self.location_index = 0
        return delay


def _endpoint(*, project_id: str, location: str, model: str) -> str:
    return (
        f"https://{location}-aiplatform.googleapis.com/v1/projects/{project_id}"
        f"/locations/{location}/publishers/google/models/{model}:generateContent"
    )


def build_request(
    image: bytes, mime_type: str, *, prompt: str = EXTRACTION_PROMPT
) -> dict[str, Any]:
    return {
        "contents": [
            {
                "role": "user",
                "parts": [
                    {"text": prompt},
                    {
                        "inlineData": {
                            "data": base64.b64encode(image).decode("ascii"),
                            "mimeType": mime_type,
                        }
                    },
                ],
            }
        ],
        "generationConfig": {"responseMimeType": "application/json"},
    }


def parse_response(raw: Any) -> ExtractedMetadata:
    try:
        text = raw["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError):
        text = None
    if not isinstance(text, str) or not text.strip():
        raise ExtractionFailure(FailureKind.EMPTY_RESPONSE, "Model returned an empty response")

    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise ExtractionFailure(
            FailureKind.MALFORMED_RESPONSE, f"Model response is not JSON: {text[:200]}"
        ) from e
    # Some responses wrap the single object in a list.
    if isinstance(obj, list) and len(obj) == 1:
        obj = obj[0]
    if not isinstance(obj, dict):
        raise ExtractionFailure(
            FailureKind.MALFORMED_RESPONSE, f"Model response is not an object: {text[:200]}"
        )

    try:
        return ExtractedMetadata.model_validate(
            {k: obj.get(k) for k in ("date", "amount", "vendor", "category")}
        )
    except ValidationError as e:
        raise ExtractionFailure(FailureKind.MALFORMED_RESPONSE, str(e)) from e


class ExtractionClient:
    def __init__(
        self,
        *,
        project_id: str,
        model: str,
        token_provider: TokenProvider,
        retry_plan: RetryPlan,
        client: httpx.Client | None = None,
        timeout_seconds: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._project_id = project_id
        self._model = model
        self._tokens = token_provider
        self._plan = retry_plan
        self._client = client or httpx.Client(timeout=timeout_seconds, follow_redirects=True)
        self._sleep = sleep

    @property
    def retry_plan(self) -> RetryPlan:
        return self._plan

    def extract(self, image: bytes, mime_type: str) -> ExtractedMetadata:
        try:
            token = self._tokens.get_token()
        except CredentialError as e:
            raise ExtractionFailure(FailureKind.REMOTE_ERROR, str(e)) from e

        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        body = build_request(image, mime_type)
        state = FailoverState(plan=self._plan)

        while True:
            location = state.location
            url = _endpoint(project_id=self._project_id, location=location, model=self._model)
            start = time.monotonic()
            state.record_send()
            try:
                resp = self._client.post(url, headers=headers, json=body)
            except httpx.HTTPError as e:
                log_event(
                    logger,
                    "extraction.request.error",
                    location=location,
                    attempt=state.attempt + 1,
                    error_type=type(e).__name__,
                )
                raise ExtractionFailure(
                    FailureKind.REMOTE_ERROR,
                    f"Vertex AI request failed: {e}",
                    location=location,
                ) from e

            if resp.status_code == 429:
                action = state.on_rate_limited(resp.text)
                log_event(
                    logger,
                    "extraction.request.rate_limited",
                    location=location,
                    attempt=state.attempt + 1,
                    max_attempts=self._plan.max_attempts,
                    duration_ms=monotonic_ms(start),
                )
                if action == Action.SEND:
                    continue
                if action == Action.BACKOFF:
                    delay = state.start_next_attempt()
                    log_event(
                        logger,
                        "extraction.request.backoff",
                        delay_s=delay,
                        attempt=state.attempt,
                        max_attempts=self._plan.max_attempts,
                    )
                    self._sleep(delay)
                    continue
                raise ExtractionFailure(
                    FailureKind.RATE_LIMITED,
                    f"Vertex AI error (429): {state.last_rate_limit_body or 'Resource exhausted'}",
                    status_code=429,
                    location=location,
                )

            if resp.status_code >= 400:
                log_event(
                    logger,
                    "extraction.request.error",
                    location=location,
                    attempt=state.attempt + 1,
                    status_code=resp.status_code,
                    duration_ms=monotonic_ms(start),
                )
                raise ExtractionFailure(
                    FailureKind.REMOTE_ERROR,
                    f"Vertex AI error ({resp.status_code}): {resp.text}",
                    status_code=resp.status_code,
                    location=location,
                )

            try:
                raw = resp.json()
            except ValueError as e:
                raise ExtractionFailure(
                    FailureKind.MALFORMED_RESPONSE,
                    "Vertex AI returned a non-JSON body",
                    status_code=resp.status_code,
                    location=location,
                ) from e
            metadata = parse_response(raw)
            log_event(
                logger,
                "extraction.request.success",
                location=location,
                attempt=state.attempt + 1,
                duration_ms=monotonic_ms(start),
            )
            return metadata


def build_extraction_client(
    settings: Settings, *, token_provider: TokenProvider, retry_plan: RetryPlan
) -> ExtractionClient:
    return ExtractionClient(
        project_id=settings.google_project_id,
        model=settings.vertex_model,
        token_provider=token_provider,
        retry_plan=retry_plan,
        timeout_seconds=settings.vertex_timeout_seconds,
    )
