import pytest

from workflow_engine.scheduling.scope import SYSTEM_TENANT, TenantScope


def test_task_tenant_wins():
    scope = TenantScope.resolve("t1", {"orgId": "t2"})
    assert scope.tenant_id == "t1"


@pytest.mark.parametrize("key", ["tenantId", "tenant_id", "orgId"])
def test_config_tenant_keys(key):
    assert TenantScope.resolve(None, {key: "t9"}).tenant_id == "t9"


def test_all_tenants_uses_system_literal():
    scope = TenantScope.resolve(None, {})
    assert scope.tenant_id == SYSTEM_TENANT == "system"
    assert TenantScope.all_tenants() == scope


def test_single_requires_tenant():
    with pytest.raises(ValueError):
        TenantScope.single("")
