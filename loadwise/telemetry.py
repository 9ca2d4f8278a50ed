"""Structured events for load resolutions that moved the requested weight."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

TELEMETRY_ENV_VAR = "LOADWISE_TELEMETRY"


@dataclass
class ResolutionEvent:
    exercise_id: str
    gym_id: Optional[str]
    implement: str
    source: str
    desired_kg: float
    resolved_kg: float
    residual_kg: float
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['created_at'] = self.created_at.isoformat()
        return data


def log_resolution_event(event: ResolutionEvent) -> None:
    logger.info(
        f"Load resolved for exercise {event.exercise_id}: {event.desired_kg}kg -> {event.resolved_kg}kg "
        f"({event.implement}, source={event.source}, residual={event.residual_kg}kg)"
    )


def queue_resolution_event(event: ResolutionEvent) -> None:
    from .tasks import enqueue_resolution_event  # tasks pulls in the app and its DB pool

    enqueue_resolution_event(event.to_dict())


def get_telemetry_sink(mode: str | None = None) -> Optional[Callable[[ResolutionEvent], None]]:
    """
    Pick the sink named by ``mode`` or ``LOADWISE_TELEMETRY``.

    'log' (default) writes one info line per event, 'queue' hands the event
    to the RQ telemetry queue, 'off' disables emission.
    """
    mode = (mode or os.getenv(TELEMETRY_ENV_VAR, "log")).strip().lower()
    if mode == "off":
        return None
    if mode == "queue":
        return queue_resolution_event
    if mode != "log":
        logger.warning(f"Unknown telemetry mode '{mode}', falling back to log.")
    return log_resolution_event
