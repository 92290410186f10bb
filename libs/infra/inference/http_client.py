"""Client for a remote inference gateway exposing the ``/v1/inference`` routes."""

from __future__ import annotations

import base64
from urllib import request
from uuid import uuid4

from libs.core.domain.entities import VideoAnnotation
from libs.core.domain.errors import InvalidResponse
from libs.infra.inference.http_support import (
    DEFAULT_TIMEOUT_SEC,
    post_json,
    require_text,
    send,
)


class HttpInferenceClient:
    """Talks to another gateway; satisfies ``FrameAnalyzer`` and ``VideoAnalyzer``."""

    def __init__(
        self,
        base_url: str,
        api_token: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        video_timeout: float = 660.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._timeout = timeout
        self._video_timeout = video_timeout

    def test_connectivity(self, prompt: str) -> str:
        if not prompt:
            raise ValueError("prompt is required")
        data = post_json(
            f"{self._base_url}/v1/inference/test",
            {"prompt": prompt},
            timeout=self._timeout,
            headers=self._auth_headers(),
        )
        return require_text(data, "response")

    def analyze_frame(self, image: bytes, prompt: str) -> str:
        if not image:
            raise ValueError("image must not be empty")
        if not prompt:
            raise ValueError("prompt is required")
        data = post_json(
            f"{self._base_url}/v1/inference/frame",
            {"image": base64.b64encode(image).decode("ascii"), "prompt": prompt},
            timeout=self._timeout,
            headers=self._auth_headers(),
        )
        return require_text(data, "description")

    def analyze_video(self, data: bytes, filename: str) -> list[VideoAnnotation]:
        if not data:
            raise ValueError("video must not be empty")
        boundary = uuid4().hex
        body = _multipart_body(boundary, "video", filename, data)
        req = request.Request(
            url=f"{self._base_url}/v1/inference/video",
            data=body,
            headers={
                "Content-Type": f"multipart/form-data; boundary={boundary}",
                **self._auth_headers(),
            },
            method="POST",
        )
        payload = send(req, timeout=self._video_timeout)
        results = payload.get("results")
        if not isinstance(results, list):
            raise InvalidResponse("Response is missing 'results'")
        try:
            return [
                VideoAnnotation(
                    frame_number=int(item["frame_number"]),
                    timestamp_sec=float(item["timestamp_sec"]),
                    image_url=str(item.get("image_url", "")),
                    description=str(item["description"]),
                )
                for item in results
            ]
        except (KeyError, TypeError, ValueError) as error:
            raise InvalidResponse(f"Malformed video annotation: {error}") from error

    def _auth_headers(self) -> dict[str, str]:
        if not self._api_token:
            return {}
        return {"Authorization": f"Bearer {self._api_token}"}


def _multipart_body(boundary: str, field: str, filename: str, data: bytes) -> bytes:
    head = (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="{field}"; filename="{filename}"\r\n'
        "Content-Type: application/octet-stream\r\n\r\n"
    ).encode("utf-8")
    tail = f"\r\n--{boundary}--\r\n".encode("utf-8")
    return head + data + tail
