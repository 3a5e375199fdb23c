"""Up-front choice between streaming and single-shot delivery.

Some clients are likely to lose a long-lived channel: they recently saw
connection errors, run on low battery, asked for reduced data, sit on a slow
network, or are close to their memory limit. For those, one blocking request
is more reliable than a stream, so the decision is made before any channel is
opened.
"""

from datetime import datetime, timedelta, timezone

from tutor_stream.core.logging import get_logger
from tutor_stream.core.schemas_tutor import ChannelMode, ClientSignals

logger = get_logger(__name__)

ERROR_THRESHOLD = 2
ERROR_WINDOW = timedelta(hours=1)
LOW_BATTERY_LEVEL = 0.15
HIGH_HEAP_USAGE = 0.8
SLOW_CONNECTION_TYPES = frozenset({"slow-2g", "2g"})


def degraded_reasons(signals: ClientSignals | None, now: datetime | None = None) -> list[str]:
    """List every client condition that argues against streaming."""
    if signals is None:
        return []

    now = now or datetime.now(timezone.utc)
    reasons: list[str] = []

    if signals.recent_error_count >= ERROR_THRESHOLD:
        last_error = signals.last_error_at
        if last_error is not None and last_error.tzinfo is None:
            last_error = last_error.replace(tzinfo=timezone.utc)
        # Error counts older than the window are stale; no timestamp means recent.
        if last_error is None or now - last_error <= ERROR_WINDOW:
            reasons.append("recent_errors")

    if (
        signals.battery_level is not None
        and signals.battery_level < LOW_BATTERY_LEVEL
        and not signals.charging
    ):
        reasons.append("low_battery")

    if signals.save_data:
        reasons.append("save_data")

    if (signals.effective_connection_type or "").lower() in SLOW_CONNECTION_TYPES:
        reasons.append("slow_connection")

    if signals.heap_usage_ratio is not None and signals.heap_usage_ratio > HIGH_HEAP_USAGE:
        reasons.append("memory_pressure")

    return reasons


def select_mode(signals: ClientSignals | None, now: datetime | None = None) -> ChannelMode:
    """
    Pick the delivery mode for a turn before opening a channel.

    Args:
        signals: Client-observed conditions (None means no information)
        now: Reference time for error-window checks

    Returns:
        NON_STREAMING when any degraded condition applies, else STREAMING
    """
    reasons = degraded_reasons(signals, now)
    if reasons:
        logger.info(f"Using non-streaming mode: {', '.join(reasons)}")
        return ChannelMode.NON_STREAMING
    return ChannelMode.STREAMING
