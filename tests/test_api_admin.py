"""
Administration API tests.

Test blocks:
  1. Areas (create / update / deactivate)
  2. Roles (catalog, CRUD, system-role protection)
  3. Users (CRUD, validation, status, password reset)
  4. Authorization
"""

import pytest

from sigedoc.models.audit import AuditLog
from sigedoc.models.auth import Session


@pytest.fixture()
def admin_h(world, auth_headers):
    return auth_headers(world.admin)


# ── 1. Areas ─────────────────────────────────────────────────────────────────

class TestAreas:
    def test_list_active_areas_for_any_user(self, client, world, auth_headers):
        res = client.get("/api/v1/areas", headers=auth_headers(world.viewer))
        assert res.status_code == 200
        codes = {a["code"] for a in res.get_json()["areas"]}
        assert codes == {"MP", "LAB"}

    def test_list_including_inactive(self, client, admin_h, world):
        res = client.get("/api/v1/areas?include_inactive=true", headers=admin_h)
        assert res.get_json()["total"] == 3

    def test_create_area(self, client, admin_h):
        res = client.post("/api/v1/areas", json={"name": "Toxicología", "code": "tox"}, headers=admin_h)
        assert res.status_code == 201
        body = res.get_json()
        assert body["code"] == "TOX"
        assert body["area_type"] == "ESPECIALIZADA"
        assert AuditLog.query.filter_by(action="area.create").count() == 1

    def test_duplicate_code(self, client, admin_h):
        res = client.post("/api/v1/areas", json={"name": "Otro laboratorio", "code": "LAB"}, headers=admin_h)
        assert res.status_code == 409

    def test_invalid_area(self, client, admin_h):
        res = client.post("/api/v1/areas", json={"name": "X", "area_type": "PLANETA"}, headers=admin_h)
        assert res.status_code == 400
        assert set(res.get_json()["details"]) == {"name", "code", "area_type"}

    def test_update_area(self, client, admin_h, world):
        res = client.put(f"/api/v1/areas/{world.area_b.id}", json={"name": "Laboratorio Central"}, headers=admin_h)
        assert res.status_code == 200
        assert res.get_json()["name"] == "Laboratorio Central"

    def test_deactivate_area_blocks_new_derivations(self, client, admin_h, world, auth_headers, receive_payload):
        res = client.patch(f"/api/v1/areas/{world.area_b.id}/status", json={"is_active": False}, headers=admin_h)
        assert res.status_code == 200
        assert res.get_json()["is_active"] is False

        clerk = auth_headers(world.clerk)
        doc = client.post("/api/v1/documents", json=receive_payload(), headers=clerk).get_json()
        res = client.post(f"/api/v1/documents/{doc['id']}/derive",
                          json={"destination_area_id": world.area_b.id}, headers=clerk)
        assert res.status_code == 400

    def test_status_requires_boolean(self, client, admin_h, world):
        res = client.patch(f"/api/v1/areas/{world.area_b.id}/status", json={"is_active": "no"}, headers=admin_h)
        assert res.status_code == 400


# ── 2. Roles ─────────────────────────────────────────────────────────────────

class TestRoles:
    def test_catalog(self, client, world, auth_headers):
        res = client.get("/api/v1/permissions/catalog", headers=auth_headers(world.viewer))
        caps = res.get_json()["capabilities"]
        assert [c["bit"] for c in caps] == [1, 2, 4, 8, 16, 32, 64, 128]

    def test_list_roles_with_user_counts(self, client, admin_h):
        roles = {r["name"]: r for r in client.get("/api/v1/roles", headers=admin_h).get_json()["roles"]}
        assert roles["Administrador"]["permissions"] == 255
        assert roles["Perito"]["user_count"] == 1

    def test_create_role_from_names(self, client, admin_h):
        res = client.post("/api/v1/roles", json={"name": "Archivo", "capabilities": ["VIEW", "EXPORT"]},
                          headers=admin_h)
        assert res.status_code == 201
        assert res.get_json()["permissions"] == 72

    def test_create_role_from_bits(self, client, admin_h):
        res = client.post("/api/v1/roles", json={"name": "Archivo", "permissions": 9}, headers=admin_h)
        assert res.get_json()["capabilities"] == ["CREATE", "VIEW"]

    def test_unknown_capability(self, client, admin_h):
        res = client.post("/api/v1/roles", json={"name": "Raro", "capabilities": ["TELEPORT"]}, headers=admin_h)
        assert res.status_code == 400

    def test_bits_outside_catalog(self, client, admin_h):
        res = client.post("/api/v1/roles", json={"name": "Raro", "permissions": 512}, headers=admin_h)
        assert res.status_code == 400

    def test_system_role_cannot_be_deleted(self, client, admin_h, world):
        res = client.delete(f"/api/v1/roles/{world.admin_role.id}", headers=admin_h)
        assert res.status_code == 400

    def test_role_in_use_cannot_be_deleted(self, client, admin_h, world):
        res = client.delete(f"/api/v1/roles/{world.analyst_role.id}", headers=admin_h)
        assert res.status_code == 409
        assert res.get_json()["details"]["user_count"] == 1

    def test_delete_unused_role(self, client, admin_h, make_role):
        role = make_role("Temporal")
        role_id = role.id
        assert client.delete(f"/api/v1/roles/{role_id}", headers=admin_h).status_code == 200
        assert client.get(f"/api/v1/roles/{role_id}", headers=admin_h).status_code == 404


# ── 3. Users ─────────────────────────────────────────────────────────────────

def _user_payload(world, **overrides):
    payload = {
        "cip_code": "31415926",
        "first_names": "María",
        "last_names": "Quispe",
        "grade": "CAP",
        "email": "maria.quispe@example.org",
        "password": "clave123",
        "role_id": world.analyst_role.id,
        "area_id": world.area_b.id,
    }
    payload.update(overrides)
    return payload


class TestUsers:
    def test_create_user(self, client, admin_h, world):
        res = client.post("/api/v1/users", json=_user_payload(world), headers=admin_h)
        assert res.status_code == 201
        body = res.get_json()
        assert body["cip_code"] == "31415926"
        assert body["capabilities"] == ["DERIVE", "EDIT", "VIEW"]
        assert "password_hash" not in body

    def test_create_user_validation(self, client, admin_h, world):
        res = client.post(
            "/api/v1/users",
            json=_user_payload(world, cip_code="12ab", first_names="M", password="123", email="no-es-correo"),
            headers=admin_h,
        )
        assert res.status_code == 400
        assert set(res.get_json()["details"]) == {"cip_code", "first_names", "password", "email"}

    def test_duplicate_cip(self, client, admin_h, world):
        client.post("/api/v1/users", json=_user_payload(world), headers=admin_h)
        res = client.post("/api/v1/users", json=_user_payload(world), headers=admin_h)
        assert res.status_code == 409

    def test_unknown_role(self, client, admin_h, world):
        res = client.post("/api/v1/users", json=_user_payload(world, role_id=999), headers=admin_h)
        assert res.status_code == 404

    def test_inactive_area(self, client, admin_h, world):
        res = client.post("/api/v1/users", json=_user_payload(world, area_id=world.area_c.id), headers=admin_h)
        assert res.status_code == 400

    def test_list_and_search(self, client, admin_h, world):
        res = client.get(f"/api/v1/users?area_id={world.area_b.id}", headers=admin_h)
        assert res.get_json()["total"] == 2
        res = client.get("/api/v1/users?q=Carla", headers=admin_h)
        assert [u["id"] for u in res.get_json()["users"]] == [world.clerk.id]

    def test_update_user_moves_area(self, client, admin_h, world, auth_headers):
        res = client.put(f"/api/v1/users/{world.viewer.id}", json={"area_id": world.area_a.id}, headers=admin_h)
        assert res.status_code == 200
        me = client.get("/api/v1/auth/verify-token", headers=auth_headers(world.viewer)).get_json()
        assert me["identity"]["home_area_id"] == world.area_a.id

    def test_deactivate_user_revokes_sessions(self, client, admin_h, world):
        client.post("/api/v1/auth/login", json={"cip_code": world.clerk.cip_code, "password": "secreto123"})
        res = client.patch(f"/api/v1/users/{world.clerk.id}/status", json={"status": "inactive"}, headers=admin_h)
        assert res.status_code == 200
        assert res.get_json()["status"] == "inactive"
        assert Session.query.filter_by(user_id=world.clerk.id, is_active=True).count() == 0

    def test_admin_cannot_deactivate_self(self, client, admin_h, world):
        res = client.patch(f"/api/v1/users/{world.admin.id}/status", json={"status": "blocked"}, headers=admin_h)
        assert res.status_code == 400

    def test_invalid_status(self, client, admin_h, world):
        res = client.patch(f"/api/v1/users/{world.clerk.id}/status", json={"status": "deleted"}, headers=admin_h)
        assert res.status_code == 400

    def test_reset_password(self, client, admin_h, world):
        res = client.put(f"/api/v1/users/{world.clerk.id}/password", json={"password": "reiniciada"},
                         headers=admin_h)
        assert res.status_code == 200
        res = client.post("/api/v1/auth/login", json={"cip_code": world.clerk.cip_code, "password": "reiniciada"})
        assert res.status_code == 200


# ── 4. Authorization ─────────────────────────────────────────────────────────

class TestAdminAuthorization:
    @pytest.mark.parametrize("method,url", [
        ("post", "/api/v1/areas"),
        ("get", "/api/v1/roles"),
        ("post", "/api/v1/roles"),
        ("get", "/api/v1/users"),
        ("post", "/api/v1/users"),
    ])
    def test_non_admin_forbidden(self, client, world, auth_headers, method, url):
        res = getattr(client, method)(url, json={}, headers=auth_headers(world.clerk))
        assert res.status_code == 403
