import pytest

from workflow_engine.jobs.handlers import HandlerRegistry, JobHandler, load_handlers
from workflow_engine.jobs.types import JobType
from workflow_engine.kernel.errors import RegistryError
from tests.support.handlers import RecordingHandler


def test_register_and_lookup():
    handler = RecordingHandler(JobType.ENRICH_LEAD)
    registry = HandlerRegistry([handler])

    assert registry.get(JobType.ENRICH_LEAD) is handler
    assert registry.get("enrich_lead") is handler
    assert registry.get("not_a_job") is None
    assert registry.job_types() == [JobType.ENRICH_LEAD]
    assert isinstance(handler, JobHandler)


def test_duplicate_registration_is_rejected():
    registry = HandlerRegistry([RecordingHandler(JobType.ENRICH_LEAD)])
    with pytest.raises(RegistryError) as exc_info:
        registry.register(RecordingHandler(JobType.ENRICH_LEAD))
    assert exc_info.value.code == "registry.handler_duplicate"


def test_completeness_check_lists_missing_job_types():
    registry = HandlerRegistry([RecordingHandler(job_type) for job_type in JobType if job_type != JobType.CREATE_INVOICE])

    assert registry.missing_job_types() == [JobType.CREATE_INVOICE]
    with pytest.raises(RegistryError) as exc_info:
        registry.require_complete()
    assert exc_info.value.meta["missing"] == ["create_invoice"]

    registry.register(RecordingHandler(JobType.CREATE_INVOICE))
    registry.require_complete()


def test_load_handlers_from_module():
    handlers = load_handlers(["tests.support.handlers"])
    assert [handler.job_type for handler in handlers] == [JobType.ENRICH_LEAD]


def test_load_handlers_rejects_bad_modules():
    with pytest.raises(RegistryError) as exc_info:
        load_handlers(["tests.support.does_not_exist"])
    assert exc_info.value.code == "registry.module_import_failed"

    with pytest.raises(RegistryError) as exc_info:
        load_handlers(["tests.support.clock"])
    assert exc_info.value.code == "registry.module_invalid"
