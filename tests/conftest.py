"""
Shared pytest fixtures for the SIGEDOC test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB reset + permission cache clear (autouse)
    - client: Flask test client (function-scoped)
    - make_area / make_role / make_user: entity factories
    - world: two areas (Mesa de Partes "A", Laboratorio "B") with their users
    - identity_of / auth_headers: caller identity and Bearer header helpers
"""

import pytest

from sigedoc import create_app
from sigedoc.core.identity import Identity
from sigedoc.models import db as _db
from sigedoc.models.area import Area
from sigedoc.models.auth import Role, User
from sigedoc.services.jwt_service import generate_access_token
from sigedoc.services.permission_service import ALL_BITS, Capability as C, invalidate_all_cache, to_bits
from sigedoc.utils.crypto import hash_password

TEST_PASSWORD = "secreto123"

# Cheap hash shared by every factory-built user
_PASSWORD_HASH = None


def _password_hash():
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        _PASSWORD_HASH = hash_password(TEST_PASSWORD, rounds=4)
    return _PASSWORD_HASH


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # ids are reused after the reset; stale cached bits would leak across tests
        invalidate_all_cache()
        yield
        invalidate_all_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_area():
    def _make(code, name=None, area_type="ESPECIALIZADA", is_active=True):
        area = Area(code=code, name=name or f"Área {code}", area_type=area_type, is_active=is_active)
        _db.session.add(area)
        _db.session.commit()
        return area
    return _make


@pytest.fixture()
def make_role():
    def _make(name, capabilities=(), *, permissions=None, is_system=False, level=10):
        bits = permissions if permissions is not None else to_bits(capabilities)
        role = Role(name=name, permissions=bits, is_system=is_system, level=level)
        _db.session.add(role)
        _db.session.commit()
        return role
    return _make


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(role, area, *, cip_code=None, status="active", first_names="Juan", last_names=None,
              extra_permissions=0):
        counter["n"] += 1
        user = User(
            cip_code=cip_code or f"{10000000 + counter['n']}",
            first_names=first_names,
            last_names=last_names or f"Pérez {counter['n']}",
            grade="SO1",
            password_hash=_password_hash(),
            role_id=role.id,
            area_id=area.id,
            status=status,
            extra_permissions=extra_permissions,
        )
        _db.session.add(user)
        _db.session.commit()
        return user
    return _make


def identity_for(user):
    return Identity(
        user_id=user.id,
        home_area_id=user.area_id,
        permission_bits=user.permission_bits,
        role_id=user.role_id,
        display_name=user.full_name,
    )


def bearer_for(user):
    token = generate_access_token(user.id, user.role_id, user.area_id, user.permission_bits)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def identity_of():
    return identity_for


@pytest.fixture()
def auth_headers():
    return bearer_for


# ── Standard world ───────────────────────────────────────────────────────


class World:
    """Two areas and the users that act in them."""

    def __init__(self, **items):
        self.__dict__.update(items)


@pytest.fixture()
def world(make_area, make_role, make_user):
    """
    Area A (Mesa de Partes) and area B (Laboratorio) plus an inactive area.

    Users:
        clerk    — A, CREATE|EDIT|VIEW|DERIVE
        analyst  — B, EDIT|VIEW|DERIVE
        viewer   — B, VIEW only
        admin    — A, every capability
        auditor  — A, VIEW|AUDIT|EXPORT
    """
    area_a = make_area("MP", "Mesa de Partes", area_type="MESA_PARTES")
    area_b = make_area("LAB", "Laboratorio")
    area_c = make_area("OLD", "Área Desactivada", is_active=False)

    clerk_role = make_role("Mesa de Partes", [C.CREATE, C.EDIT, C.VIEW, C.DERIVE])
    analyst_role = make_role("Perito", [C.EDIT, C.VIEW, C.DERIVE])
    viewer_role = make_role("Consulta", [C.VIEW])
    admin_role = make_role("Administrador", permissions=ALL_BITS, is_system=True, level=100)
    auditor_role = make_role("Auditor", [C.VIEW, C.AUDIT, C.EXPORT])

    return World(
        area_a=area_a,
        area_b=area_b,
        area_c=area_c,
        clerk_role=clerk_role,
        analyst_role=analyst_role,
        viewer_role=viewer_role,
        admin_role=admin_role,
        auditor_role=auditor_role,
        clerk=make_user(clerk_role, area_a, first_names="Carla"),
        analyst=make_user(analyst_role, area_b, first_names="Ana"),
        viewer=make_user(viewer_role, area_b, first_names="Victor"),
        admin=make_user(admin_role, area_a, cip_code="00000001", first_names="Admin"),
        auditor=make_user(auditor_role, area_a, first_names="Aurelio"),
    )


@pytest.fixture()
def receive_payload():
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        payload = {
            "registration_number": f"MP-2026-{counter['n']:06d}",
            "office_number": f"OFICIO N° {counter['n']}-2026-DIRCRI",
            "origin": "EXTERNO",
            "procedencia": "Comisaría San Isidro",
            "content": "Solicita pericia toxicológica",
            "document_date": "2026-03-14",
        }
        payload.update(overrides)
        return payload
    return _make
