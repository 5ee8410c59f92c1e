"""
Seed the role catalog, the Mesa de Partes area and an administrator.

Usage:
    python scripts/seed_data.py              # Uses development DB
    python scripts/seed_data.py --env production

This script is idempotent — safe to run multiple times.  Existing roles
keep their name but get the catalog's permission bits back.
"""

import argparse
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sigedoc import create_app
from sigedoc.models import db
from sigedoc.models.area import Area
from sigedoc.models.auth import Role, User
from sigedoc.services.permission_service import ALL_BITS, Capability, capability_names, to_bits
from sigedoc.utils.crypto import hash_password

C = Capability

# name → (level, permission bits, description, is_system)
ROLES = {
    "Administrador": (100, ALL_BITS, "Full administration of the system", True),
    "Mesa de Partes": (
        60, to_bits([C.CREATE, C.EDIT, C.VIEW, C.DERIVE, C.EXPORT]),
        "Registers incoming documents and derives them", True,
    ),
    "Responsable de Área": (
        50, to_bits([C.EDIT, C.DELETE, C.VIEW, C.DERIVE, C.EXPORT]),
        "Reviews, derives and closes documents of an area", False,
    ),
    "Perito": (30, to_bits([C.EDIT, C.VIEW]), "Works the documents held by the area", False),
    "Auditor": (20, to_bits([C.VIEW, C.AUDIT, C.EXPORT]), "Read-only access plus the audit trail", False),
}

MESA_PARTES_AREA = {"name": "Mesa de Partes", "code": "MP", "area_type": "MESA_PARTES"}

ADMIN_CIP = os.getenv("SEED_ADMIN_CIP", "00000001")
ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD", "Admin2026!")


def seed_roles():
    created = 0
    for name, (level, bits, description, is_system) in ROLES.items():
        role = Role.query.filter_by(name=name).first()
        if role is None:
            role = Role(name=name)
            db.session.add(role)
            created += 1
        role.level = level
        role.permissions = bits
        role.description = description
        role.is_system = is_system
    db.session.commit()
    print(f"  Roles: {created} created, {len(ROLES) - created} already existed")


def seed_mesa_partes():
    area = Area.query.filter_by(code=MESA_PARTES_AREA["code"]).first()
    if area:
        print(f"  Area {area.code}: already exists (id={area.id})")
        return area
    area = Area(**MESA_PARTES_AREA)
    db.session.add(area)
    db.session.commit()
    print(f"  Area {area.code}: created (id={area.id})")
    return area


def seed_admin(area):
    existing = User.query.filter_by(cip_code=ADMIN_CIP).first()
    if existing:
        print(f"  Administrator: already exists (id={existing.id})")
        return existing

    role = Role.query.filter_by(name="Administrador").first()
    user = User(
        cip_code=ADMIN_CIP,
        first_names="Administrador",
        last_names="del Sistema",
        grade="ADMIN",
        password_hash=hash_password(ADMIN_PASSWORD),
        role_id=role.id,
        area_id=area.id,
        status="active",
    )
    db.session.add(user)
    db.session.commit()
    print(f"  Administrator: created (id={user.id}, cip={ADMIN_CIP})")
    return user


def main():
    parser = argparse.ArgumentParser(description="Seed roles, the Mesa de Partes area and an administrator")
    parser.add_argument("--env", default="development", help="App environment")
    args = parser.parse_args()

    os.environ.setdefault("APP_ENV", args.env)
    app = create_app(args.env)

    with app.app_context():
        if args.env == "testing":
            db.create_all()

        print("=" * 60)
        print("  SEED: Roles, Mesa de Partes & Administrator")
        print("=" * 60)

        print("\nSeeding roles...")
        seed_roles()

        print("\nSeeding Mesa de Partes area...")
        area = seed_mesa_partes()

        print("\nSeeding administrator...")
        seed_admin(area)

        print("\nRole → capabilities:")
        for role in Role.query.order_by(Role.level.desc()).all():
            print(f"  {role.name:22s} {role.permissions:3d}  {', '.join(capability_names(role.permissions))}")

        print("\nSeed complete.")


if __name__ == "__main__":
    main()
