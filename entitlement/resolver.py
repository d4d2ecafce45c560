"""
Entitlement Resolver - pure computations over a user's subscription list.

Usage:
    records = normalize_subscriptions(user_doc.get("subscription"))

    active = resolve_active(records)
    if active:
        print(format_time_remaining(active))   # "3 days, 4 hours"

Nothing in this module raises on malformed records: a record that cannot be
interpreted is simply "not active" and has zero time remaining, since these
checks sit on UI render paths.

"Now" comes from an injected Clock (system clock by default). Results depend on
the current time, so they must not be cached across calls.
"""

import math
from datetime import datetime, timedelta
from typing import Optional, List, Sequence, Mapping, Any

from entitlement.clock import Clock, resolve_clock
from entitlement.models import (
    SubscriptionRecord,
    TimeRemaining,
    SubscriptionStatusSummary,
    StatusBadge,
)
from config import settings

# "Expiring soon" window, inclusive; "expiring today" (0 days) is a subset of it
EXPIRING_SOON_DAYS = 7

_ONE_DAY = timedelta(days=1)
_ONE_HOUR = timedelta(hours=1)
_ONE_MINUTE = timedelta(minutes=1)


def is_currently_active(record: SubscriptionRecord, now: datetime) -> bool:
    """
    A record is currently active iff it is not explicitly deactivated, has an
    end date, and that end date is strictly after `now`.
    """
    if record.is_active is False:
        return False
    if record.end_date is None:
        return False
    return record.end_date > now


def resolve_active(
    subscriptions: Sequence[SubscriptionRecord],
    clock: Optional[Clock] = None
) -> Optional[SubscriptionRecord]:
    """
    Find the currently active subscription.

    Args:
        subscriptions: Canonical ordered record list (see normalize_subscriptions)
        clock: Time source, defaults to the system clock

    Returns:
        The first record in list order that is currently active, or None
    """
    now = resolve_clock(clock).now()
    for record in subscriptions or ():
        if isinstance(record, SubscriptionRecord) and is_currently_active(record, now):
            return record
    return None


def is_active(
    subscriptions: Sequence[SubscriptionRecord],
    clock: Optional[Clock] = None
) -> bool:
    """Check whether any subscription is currently active"""
    return resolve_active(subscriptions, clock) is not None


def time_remaining(
    subscription: Optional[SubscriptionRecord],
    clock: Optional[Clock] = None
) -> TimeRemaining:
    """
    Break the time left on an (already resolved) active subscription into
    floored days/hours/minutes.

    This does not re-check activeness. The difference is plain subtraction
    with no calendar or DST adjustment; a zero or negative difference yields
    the all-zero result.
    """
    if subscription is None or subscription.end_date is None:
        return TimeRemaining()

    diff = subscription.end_date - resolve_clock(clock).now()
    if diff <= timedelta(0):
        return TimeRemaining()

    days = diff // _ONE_DAY
    return TimeRemaining(
        days=days,
        hours=(diff % _ONE_DAY) // _ONE_HOUR,
        minutes=(diff % _ONE_HOUR) // _ONE_MINUTE,
        total_hours=diff // _ONE_HOUR,
        total_minutes=diff // _ONE_MINUTE,
        is_expiring_today=days == 0,
        is_expiring_soon=days <= EXPIRING_SOON_DAYS,
    )


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def format_time_remaining(
    subscription: Optional[SubscriptionRecord],
    clock: Optional[Clock] = None
) -> str:
    """
    Human-readable time left, e.g. "3 days, 4 hours" or "45 minutes".

    Days are shown when > 0, then hours when > 0; minutes only when no whole
    day remains. Returns "Expired" when nothing is left.
    """
    remaining = time_remaining(subscription, clock)
    if remaining.is_zero:
        return "Expired"

    parts = []
    if remaining.days > 0:
        parts.append(_plural(remaining.days, "day"))
    if remaining.hours > 0:
        parts.append(_plural(remaining.hours, "hour"))
    if remaining.days == 0 and remaining.minutes > 0:
        parts.append(_plural(remaining.minutes, "minute"))
    return ", ".join(parts)


def format_time_remaining_short(
    subscription: Optional[SubscriptionRecord],
    clock: Optional[Clock] = None
) -> str:
    """Compact variant of format_time_remaining, e.g. "3d 4h" or "45m" """
    remaining = time_remaining(subscription, clock)
    if remaining.is_zero:
        return "Expired"

    parts = []
    if remaining.days > 0:
        parts.append(f"{remaining.days}d")
    if remaining.hours > 0:
        parts.append(f"{remaining.hours}h")
    if remaining.days == 0 and remaining.minutes > 0:
        parts.append(f"{remaining.minutes}m")
    return " ".join(parts)


def days_until(end_date: Optional[datetime], clock: Optional[Clock] = None) -> int:
    """Whole days left before `end_date`, rounded up, never negative"""
    if end_date is None:
        return 0
    diff = end_date - resolve_clock(clock).now()
    if diff <= timedelta(0):
        return 0
    return math.ceil(diff / _ONE_DAY)


def days_remaining(
    subscription: Optional[SubscriptionRecord],
    clock: Optional[Clock] = None
) -> int:
    """Days left on a subscription, rounded up (a partial day counts as one)"""
    if subscription is None:
        return 0
    return days_until(subscription.end_date, clock)


def summarize_status(
    subscriptions: Sequence[SubscriptionRecord],
    clock: Optional[Clock] = None
) -> SubscriptionStatusSummary:
    """Plan type, activeness and days left for a user's subscription list"""
    clock = resolve_clock(clock)
    active = resolve_active(subscriptions, clock)
    if active is None:
        return SubscriptionStatusSummary()

    return SubscriptionStatusSummary(
        plan_type=active.plan or "Premium",
        is_active=True,
        end_date=active.end_date,
        days_remaining=days_remaining(active, clock),
    )


def describe_status(
    subscription: Optional[SubscriptionRecord],
    clock: Optional[Clock] = None
) -> StatusBadge:
    """Status label and color for a single subscription"""
    if subscription is None or subscription.is_active is False:
        return StatusBadge("Inactive", "red", "No active subscription")

    days_left = days_remaining(subscription, clock)
    if days_left <= 0:
        return StatusBadge("Expired", "red", "Subscription has expired")
    if days_left <= EXPIRING_SOON_DAYS:
        return StatusBadge("Expiring Soon", "orange", f"{days_left} days remaining")
    return StatusBadge("Active", "green", f"{days_left} days remaining")


def activate_subscription(
    subscriptions: Sequence[SubscriptionRecord],
    plan_id: str,
    plan: Optional[Mapping[str, Any]] = None,
    duration_days: Optional[int] = None,
    clock: Optional[Clock] = None
) -> List[SubscriptionRecord]:
    """
    Build the subscription list that follows a verified purchase.

    Every existing record is copied with is_active=False and a new active
    record is appended with the plan snapshot. The input list is left as is.

    Args:
        subscriptions: Current canonical record list
        plan_id: Purchased plan document id
        plan: Plan document data used for the snapshot fields
        duration_days: Length of the new period; defaults to the plan's
            `duration`, then to DEFAULT_PLAN_DURATION_DAYS
        clock: Time source for the start date

    Returns:
        New list ready to be written back in full
    """
    plan = plan or {}
    if duration_days is None:
        duration_days = plan.get('duration') or settings.DEFAULT_PLAN_DURATION_DAYS

    start = resolve_clock(clock).now()
    updated = [record.deactivated() for record in subscriptions]

    snapshot = {
        'plan': plan_id,
        'planName': plan.get('name'),
        'planType': plan.get('type'),
        'subject': plan.get('subject') or "All",
        'subcategory': plan.get('subcategory') or "All",
        'mainCategory': plan.get('mainCategory') or "All",
        'testLimit': plan.get('testLimit') or 0,
        'price': plan.get('price'),
        'duration': plan.get('duration'),
        'features': plan.get('features') or [],
        'description': plan.get('description') or "",
        'startDate': start,
        'endDate': start + timedelta(days=duration_days),
        'isActive': True,
    }
    updated.append(SubscriptionRecord.from_dict(snapshot))
    return updated
