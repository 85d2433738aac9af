from __future__ import annotations

from dataclasses import dataclass

from flask import current_app, g, request

from app.errors import ValidationError


DEFAULT_TENANT_ID = "tenant-demo"


@dataclass(frozen=True)
class TenantContext:
    """Explicit tenant/actor scope handed to every service call."""

    tenant_id: str
    actor_id: str | None = None

    def __post_init__(self) -> None:
        tenant_id = normalize_tenant_id(self.tenant_id)
        if not tenant_id:
            raise ValidationError(code="tenant_required", http_status=400)
        object.__setattr__(self, "tenant_id", tenant_id)
        object.__setattr__(self, "actor_id", str(self.actor_id or "").strip() or None)


def normalize_tenant_id(value: str | None) -> str | None:
    tenant_id = str(value or "").strip()
    return tenant_id or None


def current_tenant_id() -> str | None:
    return normalize_tenant_id(getattr(g, "tenant_id", None))


def current_tenant_context() -> TenantContext:
    tenant_id = current_tenant_id() or current_app.config.get("DEFAULT_TENANT_ID") or DEFAULT_TENANT_ID
    return TenantContext(tenant_id=tenant_id, actor_id=getattr(g, "actor_id", None))


def load_tenant_from_request() -> None:
    # Autenticacao fica fora do nucleo: o workspace chega por header.
    header_tenant = normalize_tenant_id(request.headers.get("X-Tenant-Id"))
    if header_tenant:
        g.tenant_id = header_tenant
    else:
        header_company = (request.headers.get("X-Company-Id") or "").strip()
        g.tenant_id = f"tenant-{header_company}" if header_company else None
    g.actor_id = (request.headers.get("X-Actor-Id") or "").strip() or None
