"""Video Intelligence client built on ``google-cloud-videointelligence``."""

from __future__ import annotations

import concurrent.futures
import logging
from pathlib import Path
from typing import Any

from google.api_core import exceptions as google_exceptions
from google.cloud import videointelligence

from libs.core.domain.errors import InferenceError, InferenceUnavailable, Unauthenticated
from libs.infra.inference.http_support import inference_error

logger = logging.getLogger(__name__)

DEFAULT_ANNOTATION_TIMEOUT_SEC = 600.0
ANNOTATION_FEATURES = (
    videointelligence.Feature.LABEL_DETECTION,
    videointelligence.Feature.SHOT_CHANGE_DETECTION,
    videointelligence.Feature.EXPLICIT_CONTENT_DETECTION,
)


class VideoIntelligenceClient:
    """Annotates a staged video file and returns the first annotation result."""

    def __init__(
        self,
        api_key: str,
        timeout: float = DEFAULT_ANNOTATION_TIMEOUT_SEC,
        client: Any = None,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    def annotate(self, video_path: Path) -> dict[str, Any] | None:
        client = self._ensure_client()
        request = {
            "features": list(ANNOTATION_FEATURES),
            "input_content": video_path.read_bytes(),
        }
        try:
            operation = client.annotate_video(request=request)
            logger.info("Waiting up to %.0fs for annotation of %s", self._timeout, video_path.name)
            response = operation.result(timeout=self._timeout)
        except google_exceptions.GoogleAPICallError as error:
            raise _from_call_error(error) from error
        except concurrent.futures.TimeoutError as error:
            raise InferenceUnavailable(
                f"Video annotation did not finish in {self._timeout:.0f}s"
            ) from error
        except google_exceptions.GoogleAPIError as error:
            raise InferenceUnavailable(f"Video annotation failed: {error}") from error

        results = list(response.annotation_results)
        logger.info("Video annotation of %s returned %d result(s)", video_path.name, len(results))
        if not results:
            return None
        return videointelligence.VideoAnnotationResults.to_dict(
            results[0], use_integers_for_enums=False
        )

    def _ensure_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise Unauthenticated("Video Intelligence API key is not configured")
        self._client = videointelligence.VideoIntelligenceServiceClient(
            client_options={"api_key": self._api_key}
        )
        return self._client


def _from_call_error(error: google_exceptions.GoogleAPICallError) -> InferenceError:
    reasons = [error.reason] if error.reason else []
    if error.grpc_status_code is not None:
        reasons.append(error.grpc_status_code.name)
    return inference_error(error.code or 500, error.message or str(error), reasons)
