from sqlalchemy import select

from app.stockflow.core.config import settings
from app.stockflow.core.security import get_password_hash
from app.stockflow.db.models import PermissionCatalog, RoleTemplate, RoleTemplatePermission, User


DEFAULT_PERMISSIONS = [
    ("TRANSFER_VIEW", "View warehouse transfers"),
    ("TRANSFER_CREATE", "Create, edit and propose warehouse transfers"),
    ("TRANSFER_APPROVE", "Approve draft transfers"),
    ("TRANSFER_EXECUTE", "Execute approved transfers"),
    ("TRANSFER_CANCEL", "Cancel draft or pending transfers"),
    ("ORDER_VIEW", "View order stock status"),
    ("WAREHOUSE_VIEW", "View warehouses and balances"),
    ("WAREHOUSE_MANAGE", "Manage warehouses"),
    ("INVENTORY_VIEW", "View the stock movement ledger"),
    ("INVENTORY_ADJUST", "Adjust warehouse stock manually"),
]

_ALL_PERMISSIONS = [code for code, _ in DEFAULT_PERMISSIONS]

DEFAULT_ROLE_TEMPLATES = {
    "SUPERADMIN": _ALL_PERMISSIONS,
    "ADMIN": _ALL_PERMISSIONS,
    "MANAGER": [
        "TRANSFER_VIEW",
        "TRANSFER_CREATE",
        "TRANSFER_APPROVE",
        "TRANSFER_EXECUTE",
        "TRANSFER_CANCEL",
        "ORDER_VIEW",
        "WAREHOUSE_VIEW",
        "INVENTORY_VIEW",
        "INVENTORY_ADJUST",
    ],
    "OPERATOR": [
        "TRANSFER_VIEW",
        "TRANSFER_CREATE",
        "TRANSFER_EXECUTE",
        "ORDER_VIEW",
        "WAREHOUSE_VIEW",
        "INVENTORY_VIEW",
    ],
    "USER": ["TRANSFER_VIEW", "ORDER_VIEW", "WAREHOUSE_VIEW"],
}


def _get_or_create_permissions(db):
    existing = {perm.code for perm in db.execute(select(PermissionCatalog)).scalars().all()}
    for code, description in DEFAULT_PERMISSIONS:
        if code in existing:
            continue
        db.add(PermissionCatalog(code=code, description=description))


def _get_or_create_role_templates(db):
    existing = {role.name for role in db.execute(select(RoleTemplate)).scalars().all()}
    for name in DEFAULT_ROLE_TEMPLATES:
        if name in existing:
            continue
        db.add(RoleTemplate(name=name))


def _assign_role_permissions(db):
    permissions = {perm.code: perm for perm in db.execute(select(PermissionCatalog)).scalars().all()}
    roles = {role.name: role for role in db.execute(select(RoleTemplate)).scalars().all()}
    existing_pairs = {
        (rtp.role_template_id, rtp.permission_id)
        for rtp in db.execute(select(RoleTemplatePermission)).scalars().all()
    }
    for role_name, permission_codes in DEFAULT_ROLE_TEMPLATES.items():
        role = roles.get(role_name)
        if not role:
            continue
        for code in permission_codes:
            permission = permissions.get(code)
            if not permission:
                continue
            if (role.id, permission.id) in existing_pairs:
                continue
            db.add(RoleTemplatePermission(role_template_id=role.id, permission_id=permission.id))


def _get_or_create_superadmin(db):
    user = db.execute(select(User).where(User.username == settings.SUPERADMIN_USERNAME)).scalars().first()
    if user:
        return user
    user = User(
        username=settings.SUPERADMIN_USERNAME,
        email=settings.SUPERADMIN_EMAIL,
        full_name="Superadmin",
        hashed_password=get_password_hash(settings.SUPERADMIN_PASSWORD),
        role="SUPERADMIN",
        status="active",
        is_superadmin=True,
        is_active=True,
    )
    db.add(user)
    return user


def run_seed(db):
    _get_or_create_permissions(db)
    _get_or_create_role_templates(db)
    db.flush()
    _assign_role_permissions(db)
    _get_or_create_superadmin(db)
    db.commit()


if __name__ == "__main__":
    from app.stockflow.db.session import SessionLocal

    session = SessionLocal()
    try:
        run_seed(session)
    finally:
        session.close()
