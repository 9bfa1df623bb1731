"""Per-channel reconnection with bounded exponential backoff."""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Optional

from ...config.logging import get_logger
from ...exceptions import PoolExhaustedError
from ...models.connection import ChannelStatus
from ...models.subscription import ReconnectPhase, RetryState
from ...utils.tracing import get_or_create_trace_id
from .connection_manager import ConnectionManager

logger = get_logger(__name__)

# Initial reconnection delay: 1 second
INITIAL_RECONNECT_DELAY = 1.0
# Maximum reconnection delay: 30 seconds
MAX_RECONNECT_DELAY = 30.0
# Exponential backoff multiplier
BACKOFF_MULTIPLIER = 2.0
# Retries per channel before it is marked failed
DEFAULT_MAX_RETRIES = 3


def compute_backoff_delay(
    attempt: int,
    base_delay: float = INITIAL_RECONNECT_DELAY,
    max_delay: float = MAX_RECONNECT_DELAY,
    exponential: bool = True,
) -> float:
    """
    Delay before retry number `attempt` (1-based).

    With exponential backoff the delay is base_delay * 2^(attempt-1), capped
    at max_delay. Without it every retry waits base_delay.
    """
    if attempt < 1:
        return 0.0
    if not exponential:
        return min(base_delay, max_delay)
    return min(base_delay * BACKOFF_MULTIPLIER ** (attempt - 1), max_delay)


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff settings shared by every channel."""

    base_delay: float = INITIAL_RECONNECT_DELAY
    max_delay: float = MAX_RECONNECT_DELAY
    max_retries: int = DEFAULT_MAX_RETRIES
    exponential: bool = True
    auto_reconnect: bool = True

    def delay_for(self, attempt: int) -> float:
        return compute_backoff_delay(attempt, self.base_delay, self.max_delay, self.exponential)


class ReconnectionController:
    """Drives retries for channels that report an error or time out.

    Only one retry timer per channel is ever pending. When a timer fires the
    `rebuild` callback reopens the channel with its existing callback set, so
    subscribers never have to subscribe again after a transient failure.
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        rebuild: Callable[[str], None],
        on_failed: Callable[[str], None],
        policy: Optional[RetryPolicy] = None,
    ):
        """
        Initialize reconnection controller.

        Args:
            connection_manager: Source of channel status events
            rebuild: Reopens a channel by name; may raise PoolExhaustedError
            on_failed: Called once a channel has exhausted its retries
            policy: Backoff settings
        """
        self._policy = policy or RetryPolicy()
        self._rebuild = rebuild
        self._on_failed = on_failed
        self._phases: Dict[str, ReconnectPhase] = {}
        self._retry: Dict[str, RetryState] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._stopped = False
        connection_manager.add_status_listener(self.handle_status)

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def arm(self, channel_name: str) -> None:
        """Start watching a freshly opened channel."""
        self._stopped = False
        self._phases[channel_name] = ReconnectPhase.CONNECTING
        self._retry.setdefault(channel_name, RetryState())

    def disarm(self, channel_name: str) -> None:
        """Stop watching a channel and cancel its pending retry."""
        self._cancel_timer(channel_name)
        self._retry.pop(channel_name, None)
        if self._phases.pop(channel_name, None) is not None:
            logger.debug("reconnection_disarmed", channel_name=channel_name)

    def phase(self, channel_name: str) -> ReconnectPhase:
        return self._phases.get(channel_name, ReconnectPhase.IDLE)

    def retry_state(self, channel_name: str) -> Optional[RetryState]:
        return self._retry.get(channel_name)

    def has_pending_retry(self, channel_name: str) -> bool:
        timer = self._timers.get(channel_name)
        return timer is not None and not timer.done()

    def total_attempts(self) -> int:
        return sum(state.attempts for state in self._retry.values())

    def handle_status(self, channel_name: str, status: ChannelStatus) -> None:
        """React to a channel status reported by the connection manager."""
        phase = self._phases.get(channel_name)
        if phase is None or phase in (ReconnectPhase.CLOSED, ReconnectPhase.FAILED):
            return

        if status == ChannelStatus.SUBSCRIBED:
            retry = self._retry.setdefault(channel_name, RetryState())
            if retry.attempts:
                logger.info(
                    "channel_reconnected_successfully",
                    channel_name=channel_name,
                    attempts=retry.attempts,
                )
            retry.attempts = 0
            retry.next_delay = 0.0
            retry.scheduled_at = None
            self._phases[channel_name] = ReconnectPhase.OPEN
            return

        # CHANNEL_ERROR, TIMED_OUT, and CLOSED by the server all mean the feed is gone
        self._handle_failure(channel_name, reason=status.value)

    def _handle_failure(self, channel_name: str, reason: str) -> None:
        if self._stopped:
            return
        if self.has_pending_retry(channel_name):
            logger.debug(
                "channel_retry_already_pending",
                channel_name=channel_name,
                reason=reason,
            )
            return

        retry = self._retry.setdefault(channel_name, RetryState())

        if not self._policy.auto_reconnect:
            logger.warning(
                "channel_auto_reconnect_disabled",
                channel_name=channel_name,
                reason=reason,
            )
            self._fail(channel_name)
            return

        if retry.attempts >= self._policy.max_retries:
            logger.error(
                "channel_max_reconnect_attempts_reached",
                channel_name=channel_name,
                attempts=retry.attempts,
                max_retries=self._policy.max_retries,
                reason=reason,
            )
            self._fail(channel_name)
            return

        retry.attempts += 1
        retry.next_delay = self._policy.delay_for(retry.attempts)
        retry.scheduled_at = datetime.now()
        self._phases[channel_name] = ReconnectPhase.BACKOFF

        logger.warning(
            "channel_reconnect_scheduled",
            channel_name=channel_name,
            attempt=retry.attempts,
            max_retries=self._policy.max_retries,
            delay=retry.next_delay,
            reason=reason,
        )
        self._timers[channel_name] = asyncio.create_task(
            self._retry_after(channel_name, retry.next_delay)
        )

    def _fail(self, channel_name: str) -> None:
        self._phases[channel_name] = ReconnectPhase.FAILED
        retry = self._retry.get(channel_name)
        if retry is not None:
            retry.scheduled_at = None
        try:
            self._on_failed(channel_name)
        except Exception as e:
            logger.error(
                "channel_failure_handler_error",
                channel_name=channel_name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )

    async def _retry_after(self, channel_name: str, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        except asyncio.CancelledError:
            return
        finally:
            if self._timers.get(channel_name) is asyncio.current_task():
                del self._timers[channel_name]

        if self._phases.get(channel_name) != ReconnectPhase.BACKOFF:
            return
        self._attempt(channel_name)

    def _attempt(self, channel_name: str) -> None:
        trace_id = get_or_create_trace_id()
        retry = self._retry.setdefault(channel_name, RetryState())
        retry.scheduled_at = None
        self._phases[channel_name] = ReconnectPhase.CONNECTING

        logger.info(
            "channel_reconnecting",
            channel_name=channel_name,
            attempt=retry.attempts,
            trace_id=trace_id,
        )
        try:
            self._rebuild(channel_name)
        except PoolExhaustedError as e:
            logger.warning(
                "channel_reconnect_pool_exhausted",
                channel_name=channel_name,
                attempt=retry.attempts,
                error=e.message,
                trace_id=trace_id,
            )
            self._handle_failure(channel_name, reason="pool_exhausted")
        except Exception as e:
            logger.error(
                "channel_reconnect_failed",
                channel_name=channel_name,
                attempt=retry.attempts,
                error=str(e),
                error_type=type(e).__name__,
                trace_id=trace_id,
                exc_info=True,
            )
            self._handle_failure(channel_name, reason="rebuild_error")

    def reset(self, channel_name: str) -> bool:
        """
        Manually reconnect a channel now with a fresh retry budget.

        Used when a user asks to retry a failed feed. A channel that is open
        or still joining is left alone.

        Returns:
            True if a reconnect was started
        """
        phase = self._phases.get(channel_name)
        if phase is None:
            return False
        if phase in (ReconnectPhase.OPEN, ReconnectPhase.CONNECTING):
            logger.debug(
                "channel_manual_reconnect_skipped",
                channel_name=channel_name,
                phase=phase.value,
            )
            return False
        self._stopped = False
        self._cancel_timer(channel_name)
        self._retry[channel_name] = RetryState()
        logger.info("channel_manual_reconnect", channel_name=channel_name)
        self._phases[channel_name] = ReconnectPhase.BACKOFF
        self._attempt(channel_name)
        return True

    def stop(self) -> None:
        """Cancel every pending retry; later failures are not retried."""
        self._stopped = True
        for channel_name in list(self._timers):
            self._cancel_timer(channel_name)
        for retry in self._retry.values():
            retry.scheduled_at = None
        logger.info("reconnection_controller_stopped")

    def _cancel_timer(self, channel_name: str) -> None:
        timer = self._timers.pop(channel_name, None)
        if timer is not None and not timer.done():
            timer.cancel()
        retry = self._retry.get(channel_name)
        if retry is not None:
            retry.scheduled_at = None
