"""JSON-over-HTTP helpers that translate transport failures into inference errors."""

from __future__ import annotations

import http.client
import json
import logging
from typing import Any, Iterable
from urllib import request
from urllib.error import HTTPError, URLError

from libs.core.domain.errors import (
    InferenceError,
    InferenceUnavailable,
    InvalidResponse,
    Misconfigured,
    RateLimited,
    Unauthenticated,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SEC = 20.0

# Google APIs report a rejected key as 400 with one of these reasons.
CREDENTIAL_REASONS = frozenset(
    {
        "API_KEY_INVALID",
        "API_KEY_EXPIRED",
        "API_KEY_SERVICE_BLOCKED",
        "PERMISSION_DENIED",
        "UNAUTHENTICATED",
        "ACCESS_TOKEN_TYPE_UNSUPPORTED",
    }
)


def post_json(
    url: str,
    payload: dict[str, object],
    timeout: float = DEFAULT_TIMEOUT_SEC,
    headers: dict[str, str] | None = None,
) -> dict[str, Any]:
    req = request.Request(
        url=url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", **(headers or {})},
        method="POST",
    )
    return send(req, timeout=timeout)


def send(req: request.Request, timeout: float) -> dict[str, Any]:
    try:
        with request.urlopen(req, timeout=timeout) as response:
            body = response.read()
    except HTTPError as error:
        detail, reasons = _error_detail(error)
        raise inference_error(error.code, detail, reasons) from error
    except URLError as error:
        raise InferenceUnavailable(f"Inference service unreachable: {error.reason}") from error
    except (TimeoutError, OSError, http.client.HTTPException) as error:
        raise InferenceUnavailable(f"Inference call failed: {error!r}") from error

    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as error:
        raise InvalidResponse("Inference service returned malformed JSON") from error
    if not isinstance(data, dict):
        raise InvalidResponse("Inference service returned a non-object payload")
    return data


def inference_error(
    status: int,
    detail: str,
    reasons: Iterable[str] = (),
) -> InferenceError:
    """Classify an HTTP failure as fatal (credentials, configuration) or transient."""
    if status in (401, 403) or CREDENTIAL_REASONS.intersection(reasons):
        return Unauthenticated(f"Inference request rejected ({status}): {detail}")
    if status == 404:
        return Misconfigured(f"Inference model or endpoint not found: {detail}")
    if status == 429:
        return RateLimited(f"Inference rate limit exceeded: {detail}")
    if status >= 500:
        return InferenceUnavailable(f"Inference service error ({status}): {detail}")
    return InvalidResponse(f"Inference request failed ({status}): {detail}")


def error_reasons(payload: object) -> list[str]:
    """Collect ``reason``/``status`` values from a Google-style error body."""
    if not isinstance(payload, dict):
        return []
    body = payload.get("error", payload)
    if not isinstance(body, dict):
        return []
    reasons = [body["status"]] if isinstance(body.get("status"), str) else []
    for item in body.get("details") or []:
        if isinstance(item, dict) and isinstance(item.get("reason"), str):
            reasons.append(item["reason"])
    return reasons


def require_text(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise InvalidResponse(f"Response is missing '{key}'")
    return value


def _error_detail(error: HTTPError) -> tuple[str, list[str]]:
    try:
        raw = error.read().decode("utf-8")
    except (OSError, UnicodeDecodeError):
        return str(error.reason), []
    try:
        payload = json.loads(raw)
    except ValueError:
        return raw.strip() or str(error.reason), []
    if not isinstance(payload, dict):
        return str(error.reason), []
    detail = payload.get("detail") or payload.get("error")
    if isinstance(detail, dict):
        detail = detail.get("message")
    return str(detail or error.reason), error_reasons(payload)
