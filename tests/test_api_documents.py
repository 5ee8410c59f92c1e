"""
Documents & derivations API tests (through the Flask test client).

Test blocks:
  1. Authentication and permission gates
  2. Full happy path over HTTP
  3. Error mapping (400 / 403 / 404 / 409)
  4. Metadata edit, papelera, export
  5. Mesa de Partes trays
"""

import io

import pytest
from openpyxl import load_workbook

from sigedoc.models.audit import AuditLog


@pytest.fixture()
def H(world, auth_headers):
    """Bearer headers by user name."""
    return {name: auth_headers(getattr(world, name)) for name in ("clerk", "analyst", "viewer", "admin", "auditor")}


@pytest.fixture()
def doc(client, H, receive_payload):
    res = client.post("/api/v1/documents", json=receive_payload(), headers=H["clerk"])
    assert res.status_code == 201
    return res.get_json()


# ── 1. Gates ─────────────────────────────────────────────────────────────────

class TestGates:
    def test_health_is_public(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_anonymous_list_is_401(self, client, world):
        res = client.get("/api/v1/documents")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_garbage_token_is_401(self, client, world):
        res = client.get("/api/v1/documents", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid token"

    def test_missing_capability_is_403_and_audited(self, client, H, receive_payload, world):
        res = client.post("/api/v1/documents", json=receive_payload(), headers=H["analyst"])
        assert res.status_code == 403
        body = res.get_json()
        assert body["code"] == "ERR_FORBIDDEN"
        assert body["details"]["required"] == ["CREATE"]

        entry = AuditLog.query.filter_by(action="security.access_denied").one()
        assert entry.actor_user_id == world.analyst.id
        assert entry.diff["path"] == "/api/v1/documents"

    def test_deactivated_user_token_stops_working(self, client, H, world):
        from sigedoc.models import db

        world.viewer.status = "inactive"
        db.session.commit()
        res = client.get("/api/v1/documents", headers=H["viewer"])
        assert res.status_code == 401

    def test_non_json_body_is_415(self, client, H):
        res = client.post("/api/v1/documents", data="x=1", headers={**H["clerk"], "Content-Type": "text/plain"})
        assert res.status_code == 415


# ── 2. Happy path ────────────────────────────────────────────────────────────

class TestHappyPath:
    def test_receive_review_derive_accept_close(self, client, H, world, doc):
        doc_id = doc["id"]
        assert doc["status"] == "RECEIVED"
        assert doc["current_area_id"] == world.area_a.id

        res = client.post(f"/api/v1/documents/{doc_id}/review", headers=H["clerk"])
        assert res.status_code == 200
        assert res.get_json()["status"] == "IN_REVIEW"

        res = client.post(
            f"/api/v1/documents/{doc_id}/derive",
            json={"destination_area_id": world.area_b.id, "observations": "Para análisis"},
            headers=H["clerk"],
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["document"]["status"] == "DERIVED"
        derivation = body["derivation"]
        assert derivation["status"] == "PENDING"
        assert derivation["source_area_id"] == world.area_a.id

        res = client.post(f"/api/v1/derivations/{derivation['id']}/accept", headers=H["analyst"])
        assert res.status_code == 200
        body = res.get_json()
        assert body["derivation"]["status"] == "ACCEPTED"
        assert body["document"]["current_area_id"] == world.area_b.id
        assert body["document"]["status"] == "IN_REVIEW"

        res = client.post(f"/api/v1/documents/{doc_id}/close", headers=H["analyst"])
        assert res.status_code == 200
        assert res.get_json()["status"] == "CLOSED"

        res = client.get(f"/api/v1/documents/{doc_id}/history", headers=H["viewer"])
        actions = [h["action"] for h in res.get_json()["history"]]
        assert actions[0] == "document.receive"
        assert actions[-1] == "document.close"

    def test_detail_includes_derivations(self, client, H, world, doc):
        client.post(f"/api/v1/documents/{doc['id']}/derive",
                    json={"destination_area_id": world.area_b.id}, headers=H["clerk"])
        res = client.get(f"/api/v1/documents/{doc['id']}", headers=H["viewer"])
        assert res.status_code == 200
        assert len(res.get_json()["derivations"]) == 1

        res = client.get(f"/api/v1/documents/{doc['id']}/derivations", headers=H["viewer"])
        assert res.get_json()["derivations"][0]["destination_area_id"] == world.area_b.id

    def test_reject_derivation_over_http(self, client, H, world, doc):
        res = client.post(f"/api/v1/documents/{doc['id']}/derive",
                          json={"destination_area_id": world.area_b.id}, headers=H["clerk"])
        der_id = res.get_json()["derivation"]["id"]
        res = client.post(f"/api/v1/derivations/{der_id}/reject",
                          json={"reason": "No es de nuestra competencia"}, headers=H["analyst"])
        assert res.status_code == 200
        body = res.get_json()
        assert body["derivation"]["status"] == "REJECTED"
        assert body["document"]["status"] == "RECEIVED"
        assert body["document"]["current_area_id"] == world.area_a.id

    def test_list_filters_and_pagination(self, client, H, receive_payload):
        for i in range(3):
            client.post("/api/v1/documents", json=receive_payload(priority="URGENTE" if i else "NORMAL"),
                        headers=H["clerk"])
        res = client.get("/api/v1/documents?priority=urgente&per_page=1", headers=H["viewer"])
        body = res.get_json()
        assert body["total"] == 2
        assert body["pages"] == 2
        assert len(body["documents"]) == 1


# ── 3. Error mapping ─────────────────────────────────────────────────────────

class TestErrors:
    def test_validation_error_is_400_with_fields(self, client, H):
        res = client.post("/api/v1/documents", json={"origin": "EXTERNO"}, headers=H["clerk"])
        assert res.status_code == 400
        details = res.get_json()["details"]
        assert "registration_number" in details
        assert "office_number" in details

    def test_missing_document_is_404(self, client, H):
        res = client.post("/api/v1/documents/999/review", headers=H["clerk"])
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_second_pending_derive_is_409(self, client, H, world, doc, make_area):
        other = make_area("TOX", "Toxicología")
        client.post(f"/api/v1/documents/{doc['id']}/derive",
                    json={"destination_area_id": world.area_b.id}, headers=H["clerk"])
        res = client.post(f"/api/v1/documents/{doc['id']}/derive",
                          json={"destination_area_id": other.id}, headers=H["clerk"])
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    @pytest.mark.parametrize("caller", ["admin", "viewer"])
    def test_derive_closed_is_invalid_transition(self, client, H, world, doc, caller):
        client.post(f"/api/v1/documents/{doc['id']}/reject", json={"reason": "Ilegible"}, headers=H["clerk"])
        res = client.post(f"/api/v1/documents/{doc['id']}/derive",
                          json={"destination_area_id": world.area_b.id}, headers=H[caller])
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_INVALID_TRANSITION"
        assert body["details"]["current_status"] == "REJECTED"

    def test_derive_without_capability_is_403(self, client, H, world, doc):
        res = client.post(f"/api/v1/documents/{doc['id']}/derive",
                          json={"destination_area_id": world.area_b.id}, headers=H["viewer"])
        assert res.status_code == 403
        assert res.get_json()["details"]["required"] == ["DERIVE"]

    def test_accept_from_wrong_area_is_403(self, client, H, world, doc):
        res = client.post(f"/api/v1/documents/{doc['id']}/derive",
                          json={"destination_area_id": world.area_b.id}, headers=H["clerk"])
        der_id = res.get_json()["derivation"]["id"]
        res = client.post(f"/api/v1/derivations/{der_id}/accept", headers=H["clerk"])
        assert res.status_code == 403

    def test_unknown_route_is_json_404(self, client):
        res = client.get("/api/v1/nowhere")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ── 4. Edit, papelera, export ────────────────────────────────────────────────

class TestEditTrashExport:
    def test_update_metadata(self, client, H, doc):
        res = client.put(f"/api/v1/documents/{doc['id']}",
                         json={"priority": "URGENTE", "expected_version": 1}, headers=H["clerk"])
        assert res.status_code == 200
        body = res.get_json()
        assert body["priority"] == "URGENTE"
        assert body["version"] == 2

    def test_update_rejects_workflow_fields(self, client, H, doc):
        res = client.put(f"/api/v1/documents/{doc['id']}", json={"status": "CLOSED"}, headers=H["clerk"])
        assert res.status_code == 400
        assert res.get_json()["details"]["status"] == "cannot be modified"

    def test_update_with_stale_version_is_409(self, client, H, doc):
        res = client.put(f"/api/v1/documents/{doc['id']}",
                         json={"content": "x", "expected_version": 5}, headers=H["clerk"])
        assert res.status_code == 409

    def test_update_terminal_document_refused(self, client, H, doc):
        client.post(f"/api/v1/documents/{doc['id']}/reject", json={"reason": "x"}, headers=H["clerk"])
        res = client.put(f"/api/v1/documents/{doc['id']}", json={"content": "y"}, headers=H["clerk"])
        assert res.status_code == 409

    def test_trash_and_restore(self, client, H, doc):
        res = client.delete(f"/api/v1/documents/{doc['id']}", headers=H["admin"])
        assert res.status_code == 200

        assert client.get(f"/api/v1/documents/{doc['id']}", headers=H["admin"]).status_code == 404
        trash = client.get("/api/v1/documents/trash", headers=H["admin"]).get_json()
        assert [d["id"] for d in trash["documents"]] == [doc["id"]]

        res = client.post(f"/api/v1/documents/{doc['id']}/restore", headers=H["admin"])
        assert res.status_code == 200
        assert res.get_json()["deleted_at"] is None

    def test_delete_requires_delete_capability(self, client, H, doc):
        assert client.delete(f"/api/v1/documents/{doc['id']}", headers=H["clerk"]).status_code == 403

    def test_delete_with_pending_derivation_conflicts(self, client, H, world, doc):
        client.post(f"/api/v1/documents/{doc['id']}/derive",
                    json={"destination_area_id": world.area_b.id}, headers=H["clerk"])
        assert client.delete(f"/api/v1/documents/{doc['id']}", headers=H["admin"]).status_code == 409

    def test_export_xlsx(self, client, H, doc):
        res = client.get("/api/v1/documents/export", headers=H["auditor"])
        assert res.status_code == 200
        assert res.mimetype.endswith("spreadsheetml.sheet")
        wb = load_workbook(io.BytesIO(res.data))
        ws = wb["Documentos"]
        assert ws.cell(row=4, column=1).value == "Nro. Registro"
        assert ws.cell(row=5, column=1).value == doc["registration_number"]

    def test_export_requires_export(self, client, H, doc):
        assert client.get("/api/v1/documents/export", headers=H["clerk"]).status_code == 403


# ── 5. Mesa de Partes trays ──────────────────────────────────────────────────

class TestMesaPartes:
    def test_trays_follow_status(self, client, H, world, doc):
        received = client.get("/api/v1/mesa-partes/documents/received", headers=H["clerk"]).get_json()
        assert received["total"] == 1

        client.post(f"/api/v1/documents/{doc['id']}/derive",
                    json={"destination_area_id": world.area_b.id}, headers=H["clerk"])
        in_process = client.get("/api/v1/mesa-partes/documents/in-process", headers=H["clerk"]).get_json()
        assert [d["id"] for d in in_process["documents"]] == [doc["id"]]

        pending = client.get("/api/v1/mesa-partes/derivations/pending", headers=H["analyst"]).get_json()
        assert pending["total"] == 1
        assert pending["derivations"][0]["document"]["id"] == doc["id"]

    def test_completed_tray(self, client, H, doc):
        client.post(f"/api/v1/documents/{doc['id']}/reject", json={"reason": "x"}, headers=H["clerk"])
        completed = client.get("/api/v1/mesa-partes/documents/completed", headers=H["clerk"]).get_json()
        assert completed["total"] == 1

    def test_other_area_tray_requires_admin(self, client, H, world):
        url = f"/api/v1/mesa-partes/documents/received?area_id={world.area_b.id}"
        assert client.get(url, headers=H["clerk"]).status_code == 403
        assert client.get(url, headers=H["admin"]).status_code == 200
