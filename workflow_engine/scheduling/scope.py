"""Tenant scope of a scheduled task.

A task either targets one tenant or all of them. All-tenant tasks are emitted
under the `"system"` tenant id; handlers of those events enumerate tenants
themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

SYSTEM_TENANT = "system"

_CONFIG_TENANT_KEYS = ("tenantId", "tenant_id", "orgId")


@dataclass(frozen=True)
class TenantScope:
    tenant: str | None = None

    @classmethod
    def single(cls, tenant_id: str) -> "TenantScope":
        if not tenant_id:
            raise ValueError("tenant_id is required for a single-tenant scope")
        return cls(tenant=tenant_id)

    @classmethod
    def all_tenants(cls) -> "TenantScope":
        return cls(tenant=None)

    @classmethod
    def resolve(cls, tenant_id: str | None, config: Mapping[str, Any] | None) -> "TenantScope":
        """Task row tenant first, then the task config, else all tenants."""
        if tenant_id:
            return cls.single(tenant_id)
        for key in _CONFIG_TENANT_KEYS:
            value = (config or {}).get(key)
            if isinstance(value, str) and value:
                return cls.single(value)
        return cls.all_tenants()

    @property
    def tenant_id(self) -> str:
        return self.tenant or SYSTEM_TENANT
