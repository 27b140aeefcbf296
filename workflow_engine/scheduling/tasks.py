"""Scheduler task catalogue: task type -> synthetic event type, plus the default cron seed."""

from __future__ import annotations

from dataclasses import dataclass

from workflow_engine.events.types import EventType

CRON_TASK_EVENTS: dict[str, EventType] = {
    "deal_decay_check": EventType.SCHEDULER_DEAL_DECAY_CHECK,
    "lead_stale_check": EventType.SCHEDULER_LEAD_STALE_CHECK,
    "auto_priority_check": EventType.SCHEDULER_AUTO_PRIORITY_CHECK,
    "ghost_risk_recalc": EventType.SCHEDULER_GHOST_RISK_RECALC,
    "renewal_reminder": EventType.SCHEDULER_RENEWAL_REMINDER,
    "weekly_ai_report": EventType.SCHEDULER_WEEKLY_AI_REPORT,
    "integrity_watchdog": EventType.SCHEDULER_INTEGRITY_WATCHDOG,
}

# One-off tasks may use any cron task type, plus the client lifecycle nudges
# that are scheduled relative to a specific client.
ONE_OFF_TASK_EVENTS: dict[str, EventType] = {
    **CRON_TASK_EVENTS,
    "testimonial_due": EventType.TESTIMONIAL_DUE,
    "referral_due": EventType.REFERRAL_DUE,
    "upsell_due": EventType.UPSELL_DUE,
    "renewal_upcoming": EventType.RENEWAL_UPCOMING,
}


@dataclass(frozen=True)
class CronTaskSeed:
    task_type: str
    cron_expression: str


SYSTEM_CRON_TASKS: tuple[CronTaskSeed, ...] = (
    CronTaskSeed("deal_decay_check", "0 8 * * *"),  # daily 08:00
    CronTaskSeed("lead_stale_check", "0 9 * * *"),  # daily 09:00
    CronTaskSeed("auto_priority_check", "0 */6 * * *"),
    CronTaskSeed("ghost_risk_recalc", "0 10 * * *"),
    CronTaskSeed("renewal_reminder", "0 9 * * 1"),  # Mondays
    CronTaskSeed("weekly_ai_report", "0 8 * * 0"),  # Sundays
    CronTaskSeed("integrity_watchdog", "0 * * * *"),  # hourly
)
