"""
Expiry Transition Monitor

Watches one user's subscription list for the lifetime of a session and raises
one-shot notifications:
- "expired" when a periodic check finds no active subscription where the
  previous check found one (ACTIVE -> INACTIVE)
- "expiring today" / "expiring soon" / "expiring" while the active
  subscription is inside a warning band

Two event sources feed the same reducer:
- the polling loop (run/start/stop), re-checking on a fixed interval
- pushed updates (apply_update / feed_threadsafe), e.g. from a Firestore
  snapshot listener

Both replace the full subscription list and then re-check, so whichever
arrives last wins and both converge on the same resolved state. There is no
merge step and none is needed.

Usage:
    monitor = ExpiryMonitor(records, on_notify=show_toast)
    monitor.start()            # inside a running event loop
    ...
    await monitor.stop()
"""

import asyncio
from typing import Optional, List, Callable, Any, Dict

from entitlement.clock import Clock, resolve_clock
from entitlement.models import (
    SubscriptionRecord,
    EntitlementState,
    Notification,
    NotificationKind,
    Severity,
)
from entitlement.normalize import normalize_subscriptions
from entitlement.resolver import resolve_active, time_remaining, format_time_remaining
from config import settings
from utils.logger import logger


EXPIRED_MESSAGE = "Your subscription has expired. Please renew to continue."


class WarningBandNotifier:
    """
    De-duplicates expiry warnings across repeated checks.

    Two slots are tracked independently:
    - today:     key "expiring-today-{hours}h" while less than a day remains
    - countdown: key "expiring-{days}d" while 7 or fewer days remain

    Each slot fires only when its key differs from the last key it fired,
    so a check that runs every minute produces one toast per banded value.
    With zero days left both slots can fire in the same check.
    """

    def __init__(
        self,
        urgent_days: int = settings.EXPIRING_URGENT_DAYS,
        duration_ms: int = settings.NOTIFICATION_DURATION_MS
    ):
        self.urgent_days = urgent_days
        self.duration_ms = duration_ms
        self._last_keys: Dict[str, Optional[str]] = {"today": None, "countdown": None}

    @property
    def last_keys(self) -> Dict[str, Optional[str]]:
        return dict(self._last_keys)

    def reset(self) -> None:
        self._last_keys = {"today": None, "countdown": None}

    def evaluate(
        self,
        active: Optional[SubscriptionRecord],
        clock: Optional[Clock] = None
    ) -> List[Notification]:
        """
        Compute the warnings due for the active subscription.

        Args:
            active: Currently active record (None means nothing to warn about)
            clock: Time source

        Returns:
            Notifications whose key has not fired before in their slot
        """
        if active is None:
            return []

        remaining = time_remaining(active, clock)
        formatted = format_time_remaining(active, clock)
        due = []

        if remaining.is_expiring_today:
            due.append(("today", Notification(
                kind=NotificationKind.EXPIRING_TODAY,
                severity=Severity.ERROR,
                title="Subscription Expiring Today!",
                message=f"Only {formatted} remaining",
                key=f"expiring-today-{remaining.hours}h",
                duration_ms=self.duration_ms,
            )))

        if remaining.is_expiring_soon and not remaining.is_zero:
            urgent = remaining.days <= self.urgent_days
            due.append(("countdown", Notification(
                kind=NotificationKind.EXPIRING_SOON if urgent else NotificationKind.EXPIRING,
                severity=Severity.WARNING if urgent else Severity.INFO,
                title="Subscription Expiring Soon" if urgent else "Subscription Expiring",
                message=f"{formatted} remaining",
                key=f"expiring-{remaining.days}d",
                duration_ms=self.duration_ms,
            )))

        fired = []
        for slot, notification in due:
            if self._last_keys[slot] != notification.key:
                self._last_keys[slot] = notification.key
                fired.append(notification)
        return fired


class ExpiryMonitor:
    """
    Per-session ACTIVE/INACTIVE state machine over a subscription list.

    The initial state comes from the first check and never emits anything on
    its own. INACTIVE -> ACTIVE needs no handling here: it happens when a
    pushed update (a new purchase) brings an active record.
    """

    def __init__(
        self,
        subscriptions: Any = None,
        clock: Optional[Clock] = None,
        notifier: Optional[WarningBandNotifier] = None,
        on_notify: Optional[Callable[[Notification], None]] = None,
        on_expired: Optional[Callable[[List[SubscriptionRecord]], None]] = None,
        interval: float = settings.EXPIRY_CHECK_INTERVAL_SECONDS
    ):
        """
        Initialize the monitor.

        Args:
            subscriptions: Initial subscription field (any stored shape)
            clock: Time source, defaults to the system clock
            notifier: Warning de-duplication, one per session
            on_notify: Presentation callback receiving each Notification
            on_expired: Receives the locally deactivated list on ACTIVE -> INACTIVE
            interval: Polling interval in seconds
        """
        self._subscriptions: List[SubscriptionRecord] = normalize_subscriptions(subscriptions)
        self._clock = resolve_clock(clock)
        self._notifier = notifier or WarningBandNotifier()
        self._on_notify = on_notify
        self._on_expired = on_expired
        self._interval = interval
        self._state: Optional[EntitlementState] = None
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def state(self) -> Optional[EntitlementState]:
        """Current state, None before the first check"""
        return self._state

    @property
    def subscriptions(self) -> List[SubscriptionRecord]:
        return list(self._subscriptions)

    @property
    def active_subscription(self) -> Optional[SubscriptionRecord]:
        return resolve_active(self._subscriptions, self._clock)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ========== Reducer ==========

    def check(self) -> List[Notification]:
        """
        Re-resolve the current list, apply any state transition and return the
        notifications emitted by this check.
        """
        active = resolve_active(self._subscriptions, self._clock)
        current = EntitlementState.ACTIVE if active is not None else EntitlementState.INACTIVE
        emitted: List[Notification] = []

        if self._state == EntitlementState.ACTIVE and current == EntitlementState.INACTIVE:
            emitted.append(self._expire())
        elif self._state != current:
            logger.info(f"Subscription state: {self._state.value if self._state else 'unknown'} -> {current.value}")

        self._state = current
        emitted.extend(self._notifier.evaluate(active, self._clock))

        for notification in emitted:
            self._emit(notification)
        return emitted

    def apply_update(self, subscriptions: Any) -> List[Notification]:
        """
        Replace the whole subscription list (pushed update) and re-check.

        Args:
            subscriptions: New subscription field in any stored shape
        """
        self._subscriptions = normalize_subscriptions(subscriptions)
        return self.check()

    def _expire(self) -> Notification:
        self._subscriptions = [record.deactivated() for record in self._subscriptions]
        logger.info("Subscription expired, marked all local records inactive")

        if self._on_expired is not None:
            self._on_expired(list(self._subscriptions))

        return Notification(
            kind=NotificationKind.EXPIRED,
            severity=Severity.ERROR,
            title="Subscription Expired",
            message=EXPIRED_MESSAGE,
            key="expired",
            duration_ms=self._notifier.duration_ms,
        )

    def _emit(self, notification: Notification) -> None:
        logger.debug(f"Notification [{notification.key}]: {notification.message}")
        if self._on_notify is None:
            return
        # Each notification is delivered independently of the others in a check
        try:
            self._on_notify(notification)
        except Exception as e:
            logger.error(f"Notification callback failed for [{notification.key}]: {e}")

    # ========== Event sources ==========

    async def run(self, interval: Optional[float] = None) -> None:
        """Check immediately, then on every interval until cancelled"""
        interval = interval if interval is not None else self._interval
        self._loop = asyncio.get_running_loop()
        while True:
            try:
                self.check()
            except Exception as e:
                # Callback failures are logged; polling continues
                logger.error(f"Expiry check failed: {e}")
            await asyncio.sleep(interval)

    def start(self, interval: Optional[float] = None) -> asyncio.Task:
        """Start the polling loop as a task on the running event loop"""
        if self.is_running:
            return self._task
        self._loop = asyncio.get_running_loop()
        self._task = asyncio.create_task(self.run(interval))
        logger.info("Subscription expiry monitoring started")
        return self._task

    async def stop(self) -> None:
        """Stop polling (session/view teardown)"""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Subscription expiry monitoring stopped")

    def feed_threadsafe(
        self,
        subscriptions: Any,
        loop: Optional[asyncio.AbstractEventLoop] = None
    ) -> None:
        """
        Hand a pushed update from another thread to the monitor's loop.

        Firestore snapshot callbacks run on a background thread; the update is
        applied on the event loop so the reducer stays single-threaded.
        """
        loop = loop or self._loop
        if loop is None:
            raise RuntimeError("Monitor has no event loop; call start() or pass loop")
        loop.call_soon_threadsafe(self.apply_update, subscriptions)
