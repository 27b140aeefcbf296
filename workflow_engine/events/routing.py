"""Static event type -> job type routing.

Every `EventType` must appear as a key; an empty tuple means the event is
recorded but fans out to nothing. `validate_routes()` is run by the
composition root and by the test suite so a new event type cannot silently
drop work.
"""

from __future__ import annotations

from collections.abc import Mapping

from workflow_engine.events.types import EventType
from workflow_engine.jobs.types import JobType
from workflow_engine.kernel.errors import RegistryError

EVENT_JOB_ROUTES: dict[EventType, tuple[JobType, ...]] = {
    # Lead lifecycle
    EventType.LEAD_CREATED: (JobType.ENRICH_LEAD,),
    EventType.LEAD_ENRICHED: (JobType.QUALIFY_LEAD,),
    EventType.LEAD_QUALIFIED: (JobType.ROUTE_OUTREACH,),
    EventType.LEAD_STALE: (JobType.HANDLE_STALE_LEAD,),
    EventType.LEAD_REACTIVATED: (),
    EventType.BUYING_SIGNAL_HIGH: (JobType.ESCALATE_LEAD,),
    # Calls
    EventType.CALL_BOOKED: (),
    EventType.CALL_COMPLETED: (JobType.ANALYZE_CALL,),
    EventType.CALL_ANALYZED: (JobType.GENERATE_PROPOSAL_BLUEPRINT,),
    EventType.CALL_NO_SHOW: (),
    # Deals
    EventType.DEAL_CREATED: (),
    EventType.DEAL_STAGE_CHANGED: (),
    EventType.DEAL_WON: (JobType.CREATE_INVOICE, JobType.GENERATE_CONTRACT),
    EventType.DEAL_LOST: (JobType.HANDLE_DEAL_LOST,),
    EventType.DEAL_STALLED: (JobType.NUDGE_DEAL,),
    # Invoices
    EventType.INVOICE_CREATED: (),
    EventType.INVOICE_SENT: (),
    EventType.INVOICE_PAID: (JobType.CREATE_CLIENT,),
    EventType.CONTRACT_SIGNED: (),
    # Clients
    EventType.CLIENT_CREATED: (JobType.START_ONBOARDING,),
    EventType.CLIENT_ONBOARDING_COMPLETE: (),
    EventType.RENEWAL_UPCOMING: (JobType.SEND_RENEWAL_REMINDER,),
    EventType.TESTIMONIAL_DUE: (JobType.TRIGGER_TESTIMONIAL,),
    EventType.REFERRAL_DUE: (JobType.TRIGGER_REFERRAL,),
    EventType.UPSELL_DUE: (JobType.TRIGGER_UPSELL,),
    # Scheduler synthetic events
    EventType.SCHEDULER_DEAL_DECAY_CHECK: (JobType.CHECK_DEAL_DECAY,),
    EventType.SCHEDULER_LEAD_STALE_CHECK: (JobType.CHECK_LEAD_STALE,),
    EventType.SCHEDULER_AUTO_PRIORITY_CHECK: (JobType.AUTO_PRIORITY_CHECK,),
    EventType.SCHEDULER_GHOST_RISK_RECALC: (JobType.RECALC_GHOST_RISK,),
    EventType.SCHEDULER_RENEWAL_REMINDER: (JobType.SEND_RENEWAL_REMINDER,),
    EventType.SCHEDULER_WEEKLY_AI_REPORT: (JobType.GENERATE_WEEKLY_REPORT,),
    EventType.SCHEDULER_INTEGRITY_WATCHDOG: (JobType.CHECK_INTEGRITY,),
    # System events are consumed by alerting integrations, not by workers.
    EventType.SYSTEM_JOB_DEAD_LETTERED: (),
    EventType.SYSTEM_INTEGRITY_ALERT: (),
}


def validate_routes(routes: Mapping[EventType, tuple[JobType, ...]] = EVENT_JOB_ROUTES) -> None:
    """Raise `RegistryError` unless every event type has a well-formed route."""
    missing = sorted(e.value for e in EventType if e not in routes)
    if missing:
        raise RegistryError(
            code="registry.route_missing",
            message=f"Event types without a route: {', '.join(missing)}",
            meta={"event_types": missing},
        )

    for event_type, job_types in routes.items():
        bad = [repr(j) for j in job_types if not isinstance(j, JobType)]
        if bad:
            raise RegistryError(
                code="registry.route_invalid",
                message=f"Route for {event_type.value} targets unknown job types: {', '.join(bad)}",
                meta={"event_type": event_type.value},
            )
        if len(set(job_types)) != len(job_types):
            raise RegistryError(
                code="registry.route_duplicate",
                message=f"Route for {event_type.value} lists a job type twice",
                meta={"event_type": event_type.value},
            )


def job_types_for(event_type: EventType) -> tuple[JobType, ...]:
    return EVENT_JOB_ROUTES.get(event_type, ())
