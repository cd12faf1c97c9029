from __future__ import annotations

from dataclasses import dataclass

from app.stockflow.core.error_catalog import AppError, ErrorCatalog
from app.stockflow.core.metrics import metrics
from app.stockflow.repos.access_control import WarehouseAccessRepository
from app.stockflow.repos.rbac import RoleTemplateRepository
from app.stockflow.services.audit import AuditEventPayload, AuditService


SUPERADMIN_ROLES = {"SUPERADMIN"}


@dataclass(frozen=True)
class PermissionDecision:
    key: str
    allowed: bool
    source: str


def is_superadmin(user) -> bool:
    return bool(getattr(user, "is_superadmin", False)) or (user.role or "").upper() in SUPERADMIN_ROLES


class AccessControlService:
    def __init__(self, db, cache: dict | None = None):
        self.db = db
        self.repo = RoleTemplateRepository(db)
        self.warehouse_repo = WarehouseAccessRepository(db)
        self.cache = cache if cache is not None else {}

    def evaluate_permission(self, permission_key: str, user) -> PermissionDecision:
        normalized_key = permission_key.strip()
        catalog = self._get_catalog_permissions()
        if normalized_key not in catalog:
            return PermissionDecision(key=normalized_key, allowed=False, source="unknown_permission")
        if is_superadmin(user):
            return PermissionDecision(key=normalized_key, allowed=True, source="superadmin")

        role_name = (user.role or "").upper() or None
        if not role_name:
            return PermissionDecision(key=normalized_key, allowed=False, source="default_deny")
        if normalized_key in self._get_allowed_permissions(role_name):
            return PermissionDecision(key=normalized_key, allowed=True, source="role_template")
        return PermissionDecision(key=normalized_key, allowed=False, source="default_deny")

    def accessible_warehouse_ids(self, user) -> set | None:
        """Warehouses the user may act on; ``None`` means every warehouse.

        Superadmins and users without any explicit grant are unrestricted.
        """
        if is_superadmin(user):
            return None
        cache_key = f"warehouse_grants:{user.id}"
        if cache_key not in self.cache:
            self.cache[cache_key] = self.warehouse_repo.list_warehouse_ids_for_user(user.id)
        grants = self.cache[cache_key]
        return grants or None

    def has_warehouse_access(self, user, warehouse_id) -> bool:
        allowed = self.accessible_warehouse_ids(user)
        return allowed is None or warehouse_id in allowed

    def ensure_warehouse_access(self, user, warehouse_ids, *, trace_id: str | None = None, action: str) -> None:
        denied = [str(warehouse_id) for warehouse_id in warehouse_ids if not self.has_warehouse_access(user, warehouse_id)]
        if not denied:
            return
        metrics.increment_rbac_denied("warehouse")
        AuditService(self.db).record_event(
            AuditEventPayload(
                user_id=str(user.id),
                trace_id=trace_id,
                actor=user.username,
                action="access.denied",
                entity_type="warehouse",
                entity_id=denied[0],
                before=None,
                after=None,
                metadata={"denied_warehouse_ids": denied, "operation": action},
                result="denied",
                actor_role=user.role,
            )
        )
        raise AppError(ErrorCatalog.WAREHOUSE_ACCESS_DENIED, details={"warehouse_ids": denied})

    def _get_catalog_permissions(self) -> set[str]:
        cache_key = "catalog_permissions"
        if cache_key in self.cache:
            return self.cache[cache_key]
        permissions = {perm.code for perm in self.repo.list_permission_catalog()}
        self.cache[cache_key] = permissions
        return permissions

    def _get_allowed_permissions(self, role_name: str) -> set[str]:
        cache_key = f"role_permissions:{role_name}"
        if cache_key in self.cache:
            return self.cache[cache_key]
        permissions = set(self.repo.list_permissions_for_role(role_name))
        self.cache[cache_key] = permissions
        return permissions
