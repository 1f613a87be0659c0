"""
API endpoint tests.
"""
import json
import re
from urllib.parse import parse_qs, unquote, urlsplit

import pytest
from fastapi.testclient import TestClient

from health_requests.database import ServiceRequest as RequestDB
from health_requests.models.user import Role
from health_requests.services.auth_service import AuthService

from conftest import PDF, PNG

API = "/api/v1"


def intake_form(patient_id=None, patient=None, services=(), health_unit_id=None):
    payload = {"services": list(services)}
    if patient_id is not None:
        payload["patient_id"] = patient_id
    if patient is not None:
        payload["patient"] = patient
    if health_unit_id is not None:
        payload["health_unit_id"] = health_unit_id
    return {"payload": json.dumps(payload)}


class TestHealthEndpoints:
    """Test basic health/status endpoints."""

    def test_root_endpoint(self, client: TestClient):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_health_reports_database(self, client: TestClient):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "connected"

    def test_openapi_schema(self, client: TestClient):
        response = client.get("/openapi.json")
        assert response.status_code == 200
        assert f"{API}/requests/" in response.json()["paths"]


class TestAuthEndpoints:

    def test_login_returns_token(self, client: TestClient, users):
        response = client.post(f"{API}/auth/login", data={"username": "recepcao", "password": "senha-segura"})
        assert response.status_code == 200
        token = response.json()["access_token"]

        me = client.get(f"{API}/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["role"] == "recepcao"

    def test_wrong_password(self, client: TestClient, users):
        response = client.post(f"{API}/auth/login", data={"username": "recepcao", "password": "errada"})
        assert response.status_code == 401

    def test_missing_token(self, client: TestClient):
        assert client.get(f"{API}/requests/active").status_code == 401

    def test_malformed_header(self, client: TestClient):
        response = client.get(f"{API}/auth/me", headers={"Authorization": "Token abc"})
        assert response.status_code == 401

    def test_change_password(self, client: TestClient, users, auth_headers):
        response = client.post(
            f"{API}/auth/change-password",
            json={"current_password": "senha-segura", "new_password": "outra-senha-forte"},
            headers=auth_headers(Role.RECEPCAO)
        )
        assert response.status_code == 200
        login = client.post(f"{API}/auth/login", data={"username": "recepcao", "password": "outra-senha-forte"})
        assert login.status_code == 200


class TestPatientEndpoints:

    def test_register_and_find_by_formatted_cpf(self, client: TestClient, auth_headers):
        headers = auth_headers(Role.RECEPCAO)
        response = client.post(
            f"{API}/patients/",
            json={"name": "Ana Lima", "cpf": "111.222.333-44", "phone": "11 95555-0000"},
            headers=headers
        )
        assert response.status_code == 201
        assert response.json()["cpf"] == "11122233344"
        assert response.json()["has_id_photo_front"] is False

        found = client.get(f"{API}/patients/by-cpf/111.222.333-44", headers=headers)
        assert found.status_code == 200
        assert found.json()["name"] == "Ana Lima"

    def test_same_cpf_updates_contact_data(self, client: TestClient, auth_headers, patient):
        response = client.post(
            f"{API}/patients/",
            json={"name": "João da Silva", "cpf": patient.cpf, "phone": "11 90000-1111"},
            headers=auth_headers(Role.RECEPCAO)
        )
        assert response.status_code == 201
        assert response.json()["id"] == patient.id
        assert response.json()["phone"] == "11 90000-1111"

    def test_invalid_cpf(self, client: TestClient, auth_headers):
        response = client.post(
            f"{API}/patients/", json={"name": "Ana", "cpf": "123", "phone": "11955550000"},
            headers=auth_headers(Role.RECEPCAO)
        )
        assert response.status_code == 422

    def test_id_photo_upload_and_download(self, client: TestClient, auth_headers, patient):
        headers = auth_headers(Role.RECEPCAO)
        response = client.post(
            f"{API}/patients/{patient.id}/id-photo/front",
            files={"file": ("rg-frente.png", PNG, "image/png")},
            headers=headers
        )
        assert response.status_code == 200
        assert response.json()["has_id_photo_front"] is True

        photo = client.get(f"{API}/patients/{patient.id}/id-photo/front", headers=headers)
        assert photo.status_code == 200
        assert photo.content == PNG

    def test_update_contact_data(self, client: TestClient, auth_headers, patient):
        response = client.patch(
            f"{API}/patients/{patient.id}", json={"phone": " 11 91234-5678 ", "city": "Campinas"},
            headers=auth_headers(Role.RECEPCAO)
        )
        assert response.status_code == 200
        assert response.json()["phone"] == "11 91234-5678"
        assert response.json()["city"] == "Campinas"

    @pytest.mark.parametrize("body", [
        {"phone": "123"},
        {"phone": ""},
        {"phone": "        "},
        {"phone": None},
        {"name": "A"},
        {"name": None},
    ])
    def test_update_keeps_required_fields_valid(self, client: TestClient, auth_headers, patient, body):
        headers = auth_headers(Role.RECEPCAO)
        response = client.patch(f"{API}/patients/{patient.id}", json=body, headers=headers)
        assert response.status_code == 422

        stored = client.get(f"{API}/patients/{patient.id}", headers=headers)
        assert stored.status_code == 200
        assert stored.json()["phone"] == "(11) 98765-4321"
        assert stored.json()["name"] == "João da Silva"

    def test_search(self, client: TestClient, auth_headers, patient):
        response = client.get(f"{API}/patients/search", params={"q": "joão"}, headers=auth_headers(Role.RECEPCAO))
        assert response.status_code == 200


class TestIntakeEndpoint:

    def test_new_patient_with_photos_and_attachment(self, client: TestClient, auth_headers, db, exam_type):
        services = [{"service_kind": "exam", "service_id": exam_type.id, "is_urgent": True,
                     "urgency_explanation": "Dor intensa"}]
        response = client.post(
            f"{API}/requests/",
            data=intake_form(
                patient={"name": "Carlos Pereira", "cpf": "55566677788", "phone": "11 97777-0000"},
                services=services
            ),
            files={
                "id_photo_front": ("frente.png", PNG, "image/png"),
                "id_photo_back": ("verso.png", PNG, "image/png"),
                f"exam-{exam_type.id}": ("pedido.pdf", PDF, "application/pdf"),
            },
            headers=auth_headers(Role.RECEPCAO)
        )

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["count"] == 1
        assert body["requests"][0]["status"] == "received"
        assert body["requests"][0]["has_attachment"] is True
        assert body["requests"][0]["is_urgent"] is True
        assert body["quota"][0]["name"] == "Raio X"

    def test_duplicate_returns_conflict_with_details(
        self, client: TestClient, auth_headers, patient, exam_type, make_request
    ):
        existing = make_request(exam_type, status="confirmed")
        response = client.post(
            f"{API}/requests/",
            data=intake_form(patient_id=patient.id, services=[{"service_kind": "exam", "service_id": exam_type.id}]),
            files={f"exam-{exam_type.id}": ("pedido.pdf", PDF, "application/pdf")},
            headers=auth_headers(Role.RECEPCAO)
        )

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert "Raio X" in detail["message"]
        assert detail["duplicates"][0]["request_id"] == existing.id
        assert detail["duplicates"][0]["type"] == "exam"

    def test_missing_id_photos(self, client: TestClient, auth_headers, db, patient, exam_type):
        patient.id_photo_front = None
        patient.id_photo_back = None
        db.commit()
        response = client.post(
            f"{API}/requests/",
            data=intake_form(patient_id=patient.id, services=[{"service_kind": "exam", "service_id": exam_type.id}]),
            files={f"exam-{exam_type.id}": ("pedido.pdf", PDF, "application/pdf")},
            headers=auth_headers(Role.RECEPCAO)
        )
        assert response.status_code == 400
        assert "frente e verso" in response.json()["detail"]

    def test_missing_attachment(self, client: TestClient, auth_headers, patient, exam_type, db):
        response = client.post(
            f"{API}/requests/",
            data=intake_form(patient_id=patient.id, services=[{"service_kind": "exam", "service_id": exam_type.id}]),
            headers=auth_headers(Role.RECEPCAO)
        )
        assert response.status_code == 400
        assert "Raio X" in response.json()["detail"]
        assert db.query(RequestDB).count() == 0

    def test_payload_is_required(self, client: TestClient, auth_headers):
        response = client.post(f"{API}/requests/", data={"other": "x"}, headers=auth_headers(Role.RECEPCAO))
        assert response.status_code == 400

    def test_duplicate_check_endpoint(self, client: TestClient, auth_headers, patient, exam_type, make_request):
        make_request(exam_type)
        response = client.post(
            f"{API}/requests/check-duplicates",
            json={"patient_id": patient.id, "services": [{"service_kind": "exam", "service_id": exam_type.id}]},
            headers=auth_headers(Role.RECEPCAO)
        )
        assert response.status_code == 200
        assert response.json()["has_duplicates"] is True


class TestLifecycleEndpoints:

    def test_accept_and_confirm(self, client: TestClient, auth_headers, exam_type, make_request):
        request = make_request(exam_type)
        headers = auth_headers(Role.REGULACAO)

        accepted = client.patch(f"{API}/requests/{request.id}/status", json={"status": "accepted"}, headers=headers)
        assert accepted.status_code == 200
        assert accepted.json()["status"] == "accepted"

        confirmed = client.patch(f"{API}/requests/{request.id}/status", json={"status": "confirmed"}, headers=headers)
        assert confirmed.json()["status"] == "confirmed"

    def test_reception_cannot_accept(self, client: TestClient, auth_headers, exam_type, make_request):
        request = make_request(exam_type)
        response = client.patch(
            f"{API}/requests/{request.id}/status", json={"status": "accepted"}, headers=auth_headers(Role.RECEPCAO)
        )
        assert response.status_code == 403

    def test_invalid_transition(self, client: TestClient, auth_headers, exam_type, make_request):
        request = make_request(exam_type)
        response = client.patch(
            f"{API}/requests/{request.id}/status", json={"status": "confirmed"}, headers=auth_headers(Role.REGULACAO)
        )
        assert response.status_code == 400

    def test_suspend_and_revert(self, client: TestClient, auth_headers, exam_type, make_request):
        request = make_request(exam_type, status="accepted")

        blank = client.post(
            f"{API}/requests/{request.id}/suspend", json={"reason": " "}, headers=auth_headers(Role.REGULACAO)
        )
        assert blank.status_code == 400

        suspended = client.post(
            f"{API}/requests/{request.id}/suspend", json={"reason": "Pedido vencido"}, headers=auth_headers(Role.REGULACAO)
        )
        assert suspended.status_code == 200
        assert suspended.json()["notes"] == "Pedido vencido"

        listed = client.get(f"{API}/requests/suspended", headers=auth_headers(Role.RECEPCAO))
        assert [r["id"] for r in listed.json()] == [request.id]

        reverted = client.post(f"{API}/requests/{request.id}/revert", headers=auth_headers(Role.RECEPCAO))
        assert reverted.status_code == 200
        assert reverted.json()["status"] == "received"
        assert reverted.json()["notes"] is None

    def test_complete_and_view_result(self, client: TestClient, auth_headers, exam_type, make_request):
        request = make_request(exam_type, status="confirmed")
        headers = auth_headers(Role.REGULACAO)

        response = client.post(
            f"{API}/requests/{request.id}/complete",
            data={"exam_location": "Hospital Municipal", "exam_date": "2025-03-10", "exam_time": "14:30"},
            files={"result_file": ("resultado.pdf", PDF, "application/pdf")},
            headers=headers
        )

        assert response.status_code == 200, response.text
        body = response.json()
        assert body["request"]["status"] == "completed"
        assert body["request"]["has_result"] is True
        link = body["message"]["link"]
        assert link.startswith("https://wa.me/5511987654321?text=")
        assert "10/03/2025" in unquote(link)
        assert f"https://regulacao.example.gov.br/api/v1/requests/{request.id}/result" in body["message"]["text"]

        result = client.get(f"{API}/requests/{request.id}/result", headers=headers)
        assert result.status_code == 200
        assert result.content == PDF
        assert result.headers["content-type"].startswith("application/pdf")

    def test_result_link_opens_without_login(self, client: TestClient, auth_headers, exam_type, make_request):
        request = make_request(exam_type, status="confirmed")
        other = make_request(exam_type, status="confirmed")
        response = client.post(
            f"{API}/requests/{request.id}/complete",
            data={"exam_location": "Hospital Municipal", "exam_date": "2025-03-10", "exam_time": "14:30"},
            files={"result_file": ("resultado.pdf", PDF, "application/pdf")},
            headers=auth_headers(Role.REGULACAO)
        )
        assert response.status_code == 200, response.text

        url = re.search(r"https://\S+/result/view\?token=\S+", response.json()["message"]["text"]).group(0)
        parts = urlsplit(url)
        path = f"{parts.path}?{parts.query}"
        token = parse_qs(parts.query)["token"][0]

        result = client.get(path)
        assert result.status_code == 200
        assert result.content == PDF

        assert client.get(f"{path}x").status_code == 401
        assert client.get(f"{API}/requests/{other.id}/result/view", params={"token": token}).status_code == 401
        assert client.get(f"{API}/requests/{request.id}/result/view").status_code == 422

    def test_result_link_token_is_not_a_login(self, client: TestClient, exam_type, make_request):
        request = make_request(exam_type, status="completed")
        headers = {"Authorization": f"Bearer {AuthService.create_result_token(request.id)}"}

        assert client.get(f"{API}/auth/me", headers=headers).status_code == 401
        assert client.get(f"{API}/requests/{request.id}", headers=headers).status_code == 401

    def test_complete_without_result_file(self, client: TestClient, auth_headers, exam_type, make_request):
        request = make_request(exam_type, status="confirmed")
        response = client.post(
            f"{API}/requests/{request.id}/complete",
            data={"exam_location": "Hospital Municipal", "exam_date": "2025-03-10", "exam_time": "14:30"},
            headers=auth_headers(Role.REGULACAO)
        )
        assert response.status_code == 400

    def test_delete_rules(self, client: TestClient, auth_headers, exam_type, make_request):
        request = make_request(exam_type, status="completed")

        denied = client.delete(f"{API}/requests/{request.id}", headers=auth_headers(Role.RECEPCAO))
        assert denied.status_code == 403

        deleted = client.delete(f"{API}/requests/{request.id}", headers=auth_headers(Role.REGULACAO))
        assert deleted.status_code == 204
        assert client.get(f"{API}/requests/{request.id}", headers=auth_headers(Role.REGULACAO)).status_code == 404

    def test_forward_is_admin_only(self, client: TestClient, auth_headers, exam_type, make_request):
        request = make_request(exam_type)
        body = {"month": 6, "year": 2030, "reason": "Cota esgotada"}

        assert client.post(
            f"{API}/requests/{request.id}/forward", json=body, headers=auth_headers(Role.REGULACAO)
        ).status_code == 403

        response = client.post(f"{API}/requests/{request.id}/forward", json=body, headers=auth_headers(Role.ADMIN))
        assert response.status_code == 200
        assert response.json()["forwarded_to_month"] == 6

    def test_additional_document(self, client: TestClient, auth_headers, exam_type, make_request):
        request = make_request(exam_type)
        headers = auth_headers(Role.RECEPCAO)
        response = client.post(
            f"{API}/requests/{request.id}/documents/additional_document",
            files={"file": ("laudo.pdf", PDF, "application/pdf")},
            headers=headers
        )
        assert response.status_code == 200
        assert response.json()["has_additional_document"] is True

        documents = client.get(f"{API}/requests/{request.id}/documents", headers=headers).json()
        assert [d["slot"] for d in documents] == ["additional_document"]

    def test_download_keeps_non_ascii_filename(self, client: TestClient, auth_headers, exam_type, make_request):
        request = make_request(exam_type)
        headers = auth_headers(Role.RECEPCAO)
        uploaded = client.post(
            f"{API}/requests/{request.id}/documents/additional_document",
            files={"file": ("laudo – março.pdf", PDF, "application/pdf")},
            headers=headers
        )
        assert uploaded.status_code == 200

        response = client.get(f"{API}/requests/{request.id}/documents/additional_document", headers=headers)
        assert response.status_code == 200
        assert response.content == PDF
        disposition = response.headers["content-disposition"]
        assert "filename*=utf-8''laudo%20%E2%80%93%20mar%C3%A7o.pdf" in disposition
        assert 'filename="laudo  maro.pdf"' in disposition


class TestViewEndpoints:

    def test_reception_sees_only_its_requests(self, client: TestClient, auth_headers, exam_type, consultation_type, make_request):
        own = make_request(exam_type, requester=Role.RECEPCAO)
        make_request(consultation_type, requester=Role.ADMIN)

        reception = client.get(f"{API}/requests/active", headers=auth_headers(Role.RECEPCAO)).json()
        assert [r["id"] for r in reception] == [own.id]

        regulation = client.get(f"{API}/requests/active", headers=auth_headers(Role.REGULACAO)).json()
        assert len(regulation) == 2

    def test_reception_cannot_open_other_requests_by_id(self, client: TestClient, auth_headers, exam_type, make_request):
        other = make_request(exam_type, requester=Role.ADMIN)
        reception = auth_headers(Role.RECEPCAO)

        assert client.get(f"{API}/requests/{other.id}", headers=reception).status_code == 404
        assert client.get(f"{API}/requests/{other.id}/documents", headers=reception).status_code == 404
        assert client.post(
            f"{API}/requests/{other.id}/suspend", json={"reason": "Pedido ilegível"}, headers=reception
        ).status_code == 404
        assert client.delete(f"{API}/requests/{other.id}", headers=reception).status_code == 404

        assert client.get(f"{API}/requests/{other.id}", headers=auth_headers(Role.REGULACAO)).status_code == 200

    def test_unknown_status_filter(self, client: TestClient, auth_headers):
        response = client.get(f"{API}/requests/", params={"status": "arquivado"}, headers=auth_headers(Role.ADMIN))
        assert response.status_code == 400

    def test_quota_usage(self, client: TestClient, auth_headers, exam_type, make_request):
        make_request(exam_type)
        response = client.get(f"{API}/dashboard/quota-usage", headers=auth_headers(Role.REGULACAO))
        assert response.status_code == 200
        assert response.json()[0]["used"] == 1


class TestCatalogEndpoints:

    def test_admin_manages_catalog(self, client: TestClient, auth_headers):
        response = client.post(
            f"{API}/catalog/exam-types",
            json={"name": "Ultrassom", "monthly_quota": 30, "price": 12000},
            headers=auth_headers(Role.ADMIN)
        )
        assert response.status_code == 201
        exam_id = response.json()["id"]

        deactivated = client.delete(f"{API}/catalog/exam-types/{exam_id}", headers=auth_headers(Role.ADMIN))
        assert deactivated.json()["is_active"] is False

        listed = client.get(f"{API}/catalog/exam-types", headers=auth_headers(Role.RECEPCAO)).json()
        assert listed == []

    @pytest.mark.parametrize("role", [Role.RECEPCAO, Role.REGULACAO])
    def test_others_cannot_manage_catalog(self, client: TestClient, auth_headers, role):
        response = client.post(
            f"{API}/catalog/consultation-types",
            json={"name": "Ortopedia", "monthly_quota": 5},
            headers=auth_headers(role)
        )
        assert response.status_code == 403

    def test_unknown_catalog(self, client: TestClient, auth_headers):
        assert client.get(f"{API}/catalog/vaccines", headers=auth_headers(Role.ADMIN)).status_code == 404


class TestNotificationEndpoints:

    def test_banners_follow_target_role(self, client: TestClient, auth_headers):
        headers = auth_headers(Role.REGULACAO)
        client.post(f"{API}/notifications/", json={"title": "Recepção", "message": "Só recepção",
                                                   "target_role": "recepcao"}, headers=headers)
        client.post(f"{API}/notifications/", json={"title": "Todos", "message": "Para todos"}, headers=headers)

        reception = client.get(f"{API}/notifications/active", headers=auth_headers(Role.RECEPCAO)).json()
        assert {n["title"] for n in reception} == {"Recepção", "Todos"}

        admin = client.get(f"{API}/notifications/active", headers=auth_headers(Role.ADMIN)).json()
        assert {n["title"] for n in admin} == {"Todos"}

    def test_toggle_hides_banner(self, client: TestClient, auth_headers):
        created = client.post(
            f"{API}/notifications/", json={"title": "Aviso", "message": "Manutenção"}, headers=auth_headers(Role.ADMIN)
        ).json()
        client.put(f"{API}/notifications/{created['id']}/toggle", headers=auth_headers(Role.ADMIN))
        assert client.get(f"{API}/notifications/active", headers=auth_headers(Role.RECEPCAO)).json() == []

    def test_reception_cannot_create(self, client: TestClient, auth_headers):
        response = client.post(
            f"{API}/notifications/", json={"title": "X", "message": "Y"}, headers=auth_headers(Role.RECEPCAO)
        )
        assert response.status_code == 403


class TestAdminEndpoints:

    def test_create_user(self, client: TestClient, auth_headers, health_unit):
        response = client.post(
            f"{API}/admin/users",
            json={"username": "novo", "full_name": "Novo Atendente", "password": "senha-segura",
                  "role": "recepcao", "health_unit_id": health_unit.id},
            headers=auth_headers(Role.ADMIN)
        )
        assert response.status_code == 201
        assert response.json()["role"] == "recepcao"

    def test_admin_cannot_delete_self(self, client: TestClient, auth_headers, users):
        response = client.delete(f"{API}/admin/users/{users[Role.ADMIN].id}", headers=auth_headers(Role.ADMIN))
        assert response.status_code == 400

    def test_activity_log_access(self, client: TestClient, auth_headers, exam_type, make_request):
        request = make_request(exam_type)
        client.patch(f"{API}/requests/{request.id}/status", json={"status": "accepted"},
                     headers=auth_headers(Role.REGULACAO))

        logs = client.get(f"{API}/admin/activity-logs", headers=auth_headers(Role.REGULACAO))
        assert logs.status_code == 200
        assert logs.json()[0]["action"] == "status_changed"

        assert client.get(f"{API}/admin/activity-logs", headers=auth_headers(Role.RECEPCAO)).status_code == 403
