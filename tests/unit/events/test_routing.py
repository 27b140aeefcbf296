import pytest

from workflow_engine.events.routing import EVENT_JOB_ROUTES, job_types_for, validate_routes
from workflow_engine.events.types import EventType
from workflow_engine.jobs.types import JobType
from workflow_engine.kernel.errors import RegistryError


def test_every_event_type_has_a_route():
    validate_routes()
    assert set(EVENT_JOB_ROUTES) == set(EventType)


def test_every_routed_job_type_is_known():
    for job_types in EVENT_JOB_ROUTES.values():
        assert all(isinstance(job_type, JobType) for job_type in job_types)


def test_deal_won_fans_out_to_invoice_and_contract():
    assert job_types_for(EventType.DEAL_WON) == (JobType.CREATE_INVOICE, JobType.GENERATE_CONTRACT)


def test_missing_route_is_rejected():
    routes = dict(EVENT_JOB_ROUTES)
    routes.pop(EventType.LEAD_CREATED)
    with pytest.raises(RegistryError) as exc_info:
        validate_routes(routes)
    assert exc_info.value.code == "registry.route_missing"


def test_unknown_target_is_rejected():
    routes = dict(EVENT_JOB_ROUTES)
    routes[EventType.LEAD_CREATED] = ("enrich_lead",)
    with pytest.raises(RegistryError) as exc_info:
        validate_routes(routes)
    assert exc_info.value.code == "registry.route_invalid"


def test_duplicate_target_is_rejected():
    routes = dict(EVENT_JOB_ROUTES)
    routes[EventType.LEAD_CREATED] = (JobType.ENRICH_LEAD, JobType.ENRICH_LEAD)
    with pytest.raises(RegistryError) as exc_info:
        validate_routes(routes)
    assert exc_info.value.code == "registry.route_duplicate"
