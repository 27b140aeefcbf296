import re

import pytest

from workflow_engine.kernel.errors import NotFoundError, RegistryError, WorkflowError
from workflow_engine.kernel.ids import new_prefixed_id, new_worker_id


def test_error_codes_must_be_dotted_lowercase():
    with pytest.raises(ValueError):
        WorkflowError(code="Bad Code", message="nope")


def test_error_to_dict_includes_meta():
    err = NotFoundError(code="job.not_found", message="Job not found: j1", meta={"job_id": "j1"})
    assert err.to_dict() == {"code": "job.not_found", "detail": "Job not found: j1", "meta": {"job_id": "j1"}}
    assert RegistryError().code == "registry.invalid"


def test_worker_ids_are_distinct_and_well_formed():
    ids = {new_worker_id() for _ in range(20)}
    assert len(ids) == 20
    assert all(re.fullmatch(r"worker-[0-9a-f]{8}", worker_id) for worker_id in ids)


def test_prefixed_ids():
    assert new_prefixed_id("job").startswith("job_")
    with pytest.raises(ValueError):
        new_prefixed_id("Job")
