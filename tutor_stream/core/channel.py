"""Channel liveness, backoff and reconnection bookkeeping."""

import time
from dataclasses import dataclass, field

from tutor_stream.core.schemas_tutor import ChannelMode, TurnState

# A channel with no traffic for this many heartbeat intervals is torn down.
STALE_HEARTBEAT_MULTIPLIER = 2.0


@dataclass
class ChannelState:
    """State of one delivery channel.

    Owned by exactly one transport (server side) or one consumer (client
    side); never shared between connections.
    """

    mode: ChannelMode = ChannelMode.STREAMING
    is_active: bool = False
    last_activity_at: float = field(default_factory=time.monotonic)
    reconnect_attempts: int = 0
    state: TurnState = TurnState.OPENING

    def activate(self) -> None:
        self.is_active = True
        self.touch()

    def touch(self, now: float | None = None) -> None:
        """Record traffic on the channel (content, heartbeat, anything)."""
        self.last_activity_at = time.monotonic() if now is None else now

    def transition(self, state: TurnState) -> None:
        self.state = state
        if state == TurnState.CLOSED:
            self.is_active = False

    def close(self) -> None:
        self.transition(TurnState.CLOSED)

    def idle_seconds(self, now: float | None = None) -> float:
        now = time.monotonic() if now is None else now
        return max(0.0, now - self.last_activity_at)

    def stale_timeout(self, heartbeat_interval: float, now: float | None = None) -> float:
        """Seconds left before the channel counts as stale (0 once it is)."""
        return max(0.0, heartbeat_interval * STALE_HEARTBEAT_MULTIPLIER - self.idle_seconds(now))

    def record_reconnect(self) -> int:
        self.reconnect_attempts += 1
        return self.reconnect_attempts


@dataclass(frozen=True)
class BackoffPolicy:
    """
    Capped exponential backoff.

    Attempt ``n`` (1-based) waits ``min(base * 2**n, cap)`` seconds: 2s, 4s,
    8s... with the defaults. After ``max_attempts`` automatic attempts the
    caller should stop and ask the user to retry manually.
    """

    base_seconds: float = 1.0
    cap_seconds: float = 30.0
    max_attempts: int = 3

    def delay(self, attempt: int) -> float:
        if attempt < 1:
            return 0.0
        return min(self.base_seconds * (2**attempt), self.cap_seconds)

    def should_retry(self, attempts_made: int) -> bool:
        return attempts_made < self.max_attempts
