from __future__ import annotations

import argparse
from pathlib import Path

from libs.core.application.event_derivation import EventContext, EventDeriver
from libs.core.application.prompts import build_frame_prompt
from libs.core.application.sampling_scheduler import SamplingScheduler
from libs.core.domain.entities import AnalysisSession
from libs.core.domain.errors import InferenceError
from libs.infra.inference.http_client import HttpInferenceClient
from libs.infra.vision.frame_extractor import OpenCvFrameSource
from services.api_gateway.infrastructure.memory_store import (
    InMemoryDatabase,
    InMemoryEventRepository,
)
from services.api_gateway.settings import configure_logging


def run_sampled(args: argparse.Namespace, client: HttpInferenceClient) -> None:
    video_path = Path(args.video)
    events = InMemoryEventRepository(InMemoryDatabase())
    session = AnalysisSession(
        session_id="cli",
        subject_id=str(video_path),
        mode="file",
        video_url=str(video_path),
        sample_interval_sec=args.interval,
        max_samples=args.max_samples,
    )
    scheduler = SamplingScheduler(
        session=session,
        source=OpenCvFrameSource(str(video_path), live=False),
        analyzer=client,
        deriver=EventDeriver(events),
        context=EventContext(camera_name=video_path.name, video_url=str(video_path)),
        prompt=build_frame_prompt(args.analytic),
    )
    scheduler.start()
    try:
        scheduler.run(tick_interval_sec=0.1)
    except KeyboardInterrupt:
        scheduler.stop()

    result = scheduler.snapshot()
    for sample in result.samples:
        print(f"[FRAME {sample.frame_number}] t={sample.timestamp_sec:.2f}s {sample.description}")
    for event in events.list():
        print(f"[EVENT] {event.severity} {event.details}")
    print(f"[DONE] state={result.state} frames={result.sample_count}")
    if result.error:
        raise SystemExit(f"analysis failed: {result.error}")


def run_whole(args: argparse.Namespace, client: HttpInferenceClient) -> None:
    video_path = Path(args.video)
    try:
        annotations = client.analyze_video(video_path.read_bytes(), video_path.name)
    except InferenceError as error:
        raise SystemExit(f"video analysis failed: {error}") from error
    for item in annotations:
        print(f"[{item.frame_number}] t={item.timestamp_sec:.2f}s {item.description}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Analyze a video file through the gateway")
    parser.add_argument("video", help="Path to a local video file")
    parser.add_argument("--api-base", default="http://127.0.0.1:8000")
    parser.add_argument("--token", default="", help="Bearer token for frame inference")
    parser.add_argument("--interval", type=float, default=2.0)
    parser.add_argument("--max-samples", type=int, default=10)
    parser.add_argument(
        "--analytic",
        action="append",
        default=[],
        help="Analytic id used to extend the prompt (repeatable)",
    )
    parser.add_argument(
        "--whole",
        action="store_true",
        help="Upload the whole file for video annotation instead of sampling frames",
    )
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    if not Path(args.video).is_file():
        raise SystemExit(f"video not found: {args.video}")

    configure_logging(args.log_level.upper())
    client = HttpInferenceClient(base_url=args.api_base, api_token=args.token or None)
    if args.whole:
        run_whole(args, client)
    else:
        run_sampled(args, client)


if __name__ == "__main__":
    main()
