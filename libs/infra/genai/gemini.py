"""Gemini client for text and frame prompts built on the ``google-genai`` SDK."""

from __future__ import annotations

from typing import Any

import httpx
from google import genai
from google.genai import errors, types

from libs.core.domain.errors import (
    InferenceError,
    InferenceUnavailable,
    InvalidResponse,
    Unauthenticated,
)
from libs.infra.inference.http_support import (
    DEFAULT_TIMEOUT_SEC,
    error_reasons,
    inference_error,
)

DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
DEFAULT_VISION_MODEL = "gemini-2.5-flash"


class GeminiClient:
    """Calls Gemini directly; satisfies the ``VisionModel`` contract."""

    def __init__(
        self,
        api_key: str,
        text_model: str = DEFAULT_TEXT_MODEL,
        vision_model: str = DEFAULT_VISION_MODEL,
        base_url: str = "",
        timeout: float = DEFAULT_TIMEOUT_SEC,
        client: Any = None,
    ) -> None:
        self._api_key = api_key
        self._text_model = text_model
        self._vision_model = vision_model
        self._base_url = base_url
        self._timeout = timeout
        self._client = client

    def generate_text(self, prompt: str) -> str:
        if not prompt:
            raise ValueError("prompt is required")
        return self._generate(self._text_model, prompt)

    def analyze_frame(self, image: bytes, prompt: str) -> str:
        if not image:
            raise ValueError("image must not be empty")
        if not prompt:
            raise ValueError("prompt is required")
        contents = [types.Part.from_bytes(data=image, mime_type="image/jpeg"), prompt]
        return self._generate(self._vision_model, contents)

    def _generate(self, model: str, contents: Any) -> str:
        client = self._ensure_client()
        try:
            response = client.models.generate_content(model=model, contents=contents)
        except errors.APIError as error:
            raise _from_api_error(error) from error
        except httpx.HTTPError as error:
            raise InferenceUnavailable(f"Gemini unreachable: {error!r}") from error

        text = (response.text or "").strip()
        if not text:
            raise InvalidResponse("Gemini returned an empty description")
        return text

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise Unauthenticated("Gemini API key is not configured")
        http_options = types.HttpOptions(timeout=int(self._timeout * 1000))
        if self._base_url:
            http_options.base_url = self._base_url
        self._client = genai.Client(api_key=self._api_key, http_options=http_options)
        return self._client


def _from_api_error(error: errors.APIError) -> InferenceError:
    reasons = error_reasons(error.details)
    return inference_error(error.code or 500, error.message or str(error), reasons)
