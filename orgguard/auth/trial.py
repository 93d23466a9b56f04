"""
Trial status - a pure function of plan, trial start, subscription and time.

Never cached: the answer changes with the wall clock, so it is recomputed
for every request or render.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from orgguard.core.models import Plan, TrialPhase
from orgguard.core.utils import ensure_utc

TRIAL_DURATION_DAYS = 14
TRIAL_ENDING_SOON_DAYS = 3
UPGRADE_BANNER_DAYS = 7

# Reachable while a trial is expired; everything else redirects to billing.
EXPIRED_TRIAL_ALLOWED_ROUTES: tuple[str, ...] = ("/billing", "/support", "/login", "/signup")
EXPIRED_TRIAL_REDIRECT = "/billing"

_DAY = timedelta(days=1)
_HOUR = timedelta(hours=1)


@dataclass(frozen=True)
class TrialStatus:
    """Where an organization is in its trial lifecycle."""

    phase: TrialPhase
    on_trial: bool = False
    days_left: int = 0
    hours_left: int = 0
    trial_ends_at: datetime | None = None
    allowed_routes_during_expiry: tuple[str, ...] = EXPIRED_TRIAL_ALLOWED_ROUTES
    show_upgrade_banner: bool = False

    @property
    def is_expired(self) -> bool:
        return self.phase is TrialPhase.EXPIRED

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "on_trial": self.on_trial,
            "days_left": self.days_left,
            "hours_left": self.hours_left,
            "trial_ends_at": self.trial_ends_at.isoformat() if self.trial_ends_at else None,
            "allowed_routes_during_expiry": list(self.allowed_routes_during_expiry),
            "show_upgrade_banner": self.show_upgrade_banner,
        }


def evaluate(
    plan: Plan | str,
    trial_started_at: datetime | None,
    has_active_subscription: bool,
    now: datetime,
    duration_days: int = TRIAL_DURATION_DAYS,
    ending_soon_days: int = TRIAL_ENDING_SOON_DAYS,
) -> TrialStatus:
    """
    Derive the trial phase.

    - Not on `pro_trial`, or paying: `active`, unrestricted
    - Otherwise the trial ends `duration_days` after it started;
      `days_left` is the remaining time rounded up to whole days
    - `expired` once now >= end, `ending_soon` when 0 < days_left <= ending_soon_days

    A `pro_trial` organization with no recorded start has just started.
    """
    plan = Plan(plan)
    now = ensure_utc(now)

    if has_active_subscription or plan is not Plan.PRO_TRIAL:
        return TrialStatus(
            phase=TrialPhase.ACTIVE,
            show_upgrade_banner=plan is Plan.SOLO and not has_active_subscription,
        )

    started = ensure_utc(trial_started_at) if trial_started_at else now
    trial_ends_at = started + timedelta(days=duration_days)
    remaining = trial_ends_at - now

    if now >= trial_ends_at:
        return TrialStatus(
            phase=TrialPhase.EXPIRED,
            on_trial=True,
            trial_ends_at=trial_ends_at,
            show_upgrade_banner=True,
        )

    days_left = math.ceil(remaining / _DAY)
    hours_left = math.ceil(remaining / _HOUR)
    phase = TrialPhase.ENDING_SOON if 0 < days_left <= ending_soon_days else TrialPhase.ACTIVE

    return TrialStatus(
        phase=phase,
        on_trial=True,
        days_left=days_left,
        hours_left=hours_left,
        trial_ends_at=trial_ends_at,
        show_upgrade_banner=days_left <= UPGRADE_BANNER_DAYS,
    )


def is_route_allowed_during_expiry(
    route: str | None,
    allowed: tuple[str, ...] = EXPIRED_TRIAL_ALLOWED_ROUTES,
) -> bool:
    """Segment-aware prefix match: "/billing/plans" matches, "/billingx" does not."""
    if not route:
        return False
    path = route.split("?", 1)[0].rstrip("/") or "/"
    return any(path == prefix or path.startswith(prefix + "/") for prefix in allowed)


def effective_plan(plan: Plan | str, status: TrialStatus) -> Plan:
    """An expired trial is judged as `solo` for feature and limit checks."""
    plan = Plan(plan)
    if plan is Plan.PRO_TRIAL and status.is_expired:
        return Plan.SOLO
    return plan


def format_time_remaining(status: TrialStatus) -> str:
    """Short human string for banners."""
    if not status.on_trial:
        return ""
    if status.is_expired:
        return "Trial expired"
    if status.days_left <= 1 and status.hours_left < 24:
        return "1 hour left" if status.hours_left == 1 else f"{status.hours_left} hours left"
    if status.days_left == 1:
        return "1 day left"
    return f"{status.days_left} days left"
