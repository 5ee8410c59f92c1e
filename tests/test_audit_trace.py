"""
Audit API tests — access control, filters and single-entry lookup.
"""

import pytest

from sigedoc.models.audit import AuditLog


@pytest.fixture()
def traced(client, world, auth_headers, receive_payload):
    """One document received at A, derived to B and accepted there."""
    clerk = auth_headers(world.clerk)
    doc = client.post("/api/v1/documents", json=receive_payload(), headers=clerk).get_json()
    derived = client.post(f"/api/v1/documents/{doc['id']}/derive",
                          json={"destination_area_id": world.area_b.id}, headers=clerk).get_json()
    client.post(f"/api/v1/derivations/{derived['derivation']['id']}/accept", headers=auth_headers(world.analyst))
    return doc


class TestAuditAccess:
    def test_auditor_can_list(self, client, world, auth_headers, traced):
        res = client.get("/api/v1/audit", headers=auth_headers(world.auditor))
        assert res.status_code == 200
        assert res.get_json()["total"] >= 5

    def test_admin_can_list(self, client, world, auth_headers):
        assert client.get("/api/v1/audit", headers=auth_headers(world.admin)).status_code == 200

    def test_clerk_forbidden(self, client, world, auth_headers):
        res = client.get("/api/v1/audit", headers=auth_headers(world.clerk))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"


class TestAuditFilters:
    def test_by_document(self, client, world, auth_headers, traced):
        res = client.get(f"/api/v1/audit?document_id={traced['id']}&per_page=50", headers=auth_headers(world.auditor))
        actions = {e["action"] for e in res.get_json()["audit_logs"]}
        assert {"document.receive", "document.derive", "derivation.accept", "document.accept_derivation"} <= actions

    def test_by_action_prefix(self, client, world, auth_headers, traced):
        res = client.get("/api/v1/audit?action=derivation.", headers=auth_headers(world.auditor))
        actions = [e["action"] for e in res.get_json()["audit_logs"]]
        assert actions and all(a.startswith("derivation.") for a in actions)

    def test_by_area(self, client, world, auth_headers, traced):
        res = client.get(f"/api/v1/audit?area_id={world.area_b.id}", headers=auth_headers(world.auditor))
        for entry in res.get_json()["audit_logs"]:
            assert world.area_b.id in (entry["source_area_id"], entry["destination_area_id"])

    def test_newest_first(self, client, world, auth_headers, traced):
        res = client.get(f"/api/v1/audit?document_id={traced['id']}", headers=auth_headers(world.auditor))
        ids = [e["id"] for e in res.get_json()["audit_logs"]]
        assert ids == sorted(ids, reverse=True)


class TestAuditEntry:
    def test_get_entry(self, client, world, auth_headers, traced):
        entry = AuditLog.query.filter_by(action="document.receive").first()
        res = client.get(f"/api/v1/audit/{entry.id}", headers=auth_headers(world.auditor))
        assert res.status_code == 200
        assert res.get_json()["document_id"] == traced["id"]

    def test_missing_entry(self, client, world, auth_headers):
        res = client.get("/api/v1/audit/99999", headers=auth_headers(world.auditor))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"
