"""Background threads driving analysis session schedulers."""

from __future__ import annotations

import logging
import threading

from libs.core.application.analysis_service import Launcher
from libs.core.application.sampling_scheduler import SamplingScheduler

logger = logging.getLogger(__name__)


def thread_launcher(tick_interval_sec: float) -> Launcher:
    """Return a launcher that runs each scheduler on its own daemon thread."""

    def launch(scheduler: SamplingScheduler) -> None:
        thread = threading.Thread(
            target=scheduler.run,
            args=(tick_interval_sec,),
            name=f"analysis-{scheduler.session_id[:8]}",
            daemon=True,
        )
        thread.start()
        logger.debug(
            "Started thread %s for session %s", thread.name, scheduler.session_id
        )

    return launch

