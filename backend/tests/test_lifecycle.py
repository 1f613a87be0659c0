"""
Request lifecycle tests: transitions, completion, deletion and forwarding.
"""
from datetime import datetime

import pytest

from health_requests.database import ActivityLog as ActivityLogDB, ServiceRequest as RequestDB
from health_requests.exceptions import AuthorizationError, CollaboratorError, ValidationError
from health_requests.models.document import DocumentSlot
from health_requests.models.request import RequestStatus
from health_requests.models.user import Role
from health_requests.services import lifecycle_service
from health_requests.services.lifecycle_service import ResultUpload
from health_requests.services.notification_channel import WhatsAppChannel

from conftest import PDF


@pytest.fixture
def result_upload():
    return ResultUpload(data=PDF, filename="resultado.pdf", mime_type="application/pdf")


def _complete(db, request, actor, file_store, result, **overrides):
    fields = {
        "location": "Hospital Municipal",
        "exam_date": "2025-03-10",
        "exam_time": "14:30",
    }
    fields.update(overrides)
    return lifecycle_service.complete_request(
        db, request, actor, fields["location"], fields["exam_date"], fields["exam_time"],
        result, file_store, WhatsAppChannel(country_code="55")
    )


class TestTransitions:

    def test_regulation_walks_the_happy_path(self, db, exam_type, make_request, actors):
        request = make_request(exam_type)
        regulation = actors[Role.REGULACAO]

        request = lifecycle_service.transition(db, request, RequestStatus.ACCEPTED, regulation)
        assert request.status == "accepted"
        assert request.registrar_id == regulation.id

        request = lifecycle_service.transition(db, request, RequestStatus.CONFIRMED, regulation)
        assert request.status == "confirmed"

    def test_legacy_status_is_treated_as_received(self, db, exam_type, make_request, actors):
        request = make_request(exam_type, status="Aguardando Análise")
        request = lifecycle_service.transition(db, request, RequestStatus.ACCEPTED, actors[Role.REGULACAO])
        assert request.status == "accepted"

    def test_steps_cannot_be_skipped(self, db, exam_type, make_request, actors):
        request = make_request(exam_type)
        with pytest.raises(ValidationError):
            lifecycle_service.transition(db, request, RequestStatus.CONFIRMED, actors[Role.REGULACAO])

    def test_completion_needs_its_own_action(self, db, exam_type, make_request, actors):
        request = make_request(exam_type, status="confirmed")
        with pytest.raises(ValidationError):
            lifecycle_service.transition(db, request, RequestStatus.COMPLETED, actors[Role.REGULACAO])

    def test_reception_cannot_accept(self, db, exam_type, make_request, actors):
        request = make_request(exam_type)
        with pytest.raises(AuthorizationError):
            lifecycle_service.transition(db, request, RequestStatus.ACCEPTED, actors[Role.RECEPCAO])
        db.refresh(request)
        assert request.status == "received"

    def test_status_change_is_logged(self, db, exam_type, make_request, actors):
        request = make_request(exam_type)
        lifecycle_service.transition(db, request, RequestStatus.ACCEPTED, actors[Role.REGULACAO])

        log = db.query(ActivityLogDB).filter(ActivityLogDB.request_id == request.id).one()
        assert log.action == "status_changed"
        assert log.old_status == "received"
        assert log.new_status == "accepted"
        assert 'aceitou o exame "Raio X" do paciente João da Silva' in log.description
        assert log.user_role == "regulacao"


class TestSuspension:

    @pytest.mark.parametrize("status", ["received", "accepted", "confirmed"])
    def test_suspend_stores_reason(self, db, exam_type, make_request, actors, status):
        request = make_request(exam_type, status=status)
        request = lifecycle_service.suspend(db, request, actors[Role.REGULACAO], "  Pedido ilegível  ")
        assert request.status == "suspenso"
        assert request.notes == "Pedido ilegível"

    def test_reason_is_required(self, db, exam_type, make_request, actors):
        request = make_request(exam_type)
        with pytest.raises(ValidationError):
            lifecycle_service.suspend(db, request, actors[Role.REGULACAO], "   ")

    @pytest.mark.parametrize("role", [Role.ADMIN, Role.RECEPCAO])
    def test_only_regulation_suspends(self, db, exam_type, make_request, actors, role):
        request = make_request(exam_type)
        with pytest.raises(AuthorizationError):
            lifecycle_service.suspend(db, request, actors[role], "motivo")

    def test_completed_requests_cannot_be_suspended(self, db, exam_type, make_request, actors):
        request = make_request(exam_type, status="completed")
        with pytest.raises(ValidationError):
            lifecycle_service.suspend(db, request, actors[Role.REGULACAO], "motivo")

    def test_reception_reverts_and_reason_is_cleared(self, db, exam_type, make_request, actors):
        request = make_request(exam_type, status="suspenso", notes="Pedido ilegível")
        request = lifecycle_service.revert_suspension(db, request, actors[Role.RECEPCAO])
        assert request.status == "received"
        assert request.notes is None

        log = db.query(ActivityLogDB).filter(ActivityLogDB.request_id == request.id).one()
        assert log.action == "reverted"

    def test_admin_cannot_revert(self, db, exam_type, make_request, actors):
        request = make_request(exam_type, status="suspenso", notes="Pedido ilegível")
        with pytest.raises(AuthorizationError):
            lifecycle_service.revert_suspension(db, request, actors[Role.ADMIN])

    def test_only_suspended_requests_revert(self, db, exam_type, make_request, actors):
        request = make_request(exam_type, status="accepted")
        with pytest.raises(ValidationError):
            lifecycle_service.revert_suspension(db, request, actors[Role.RECEPCAO])


class TestCompletion:

    def test_complete_sets_every_field_and_composes_message(
        self, db, exam_type, make_request, actors, file_store, result_upload
    ):
        request = make_request(exam_type, status="confirmed")
        outcome = _complete(db, request, actors[Role.REGULACAO], file_store, result_upload)

        completed = outcome.request
        assert completed.status == "completed"
        assert completed.exam_location == "Hospital Municipal"
        assert completed.exam_date == "2025-03-10"
        assert completed.exam_time == "14:30"
        assert completed.completed_date is not None
        assert completed.result_filename == "resultado.pdf"
        assert file_store.fetch(completed.result_ref)[0] == PDF

        assert outcome.message.phone == "5511987654321"
        assert outcome.message.link.startswith("https://wa.me/5511987654321?text=")
        assert "10/03/2025" in outcome.message.text
        assert f"/requests/{request.id}/result" in outcome.message.text

    @pytest.mark.parametrize("overrides", [
        {"location": ""},
        {"exam_date": ""},
        {"exam_time": ""},
        {"exam_date": "10/03/2025"},
        {"exam_date": "2025-02-30"},
        {"exam_time": "2pm"},
    ])
    def test_incomplete_fields_are_rejected(
        self, db, exam_type, make_request, actors, file_store, result_upload, overrides
    ):
        request = make_request(exam_type, status="confirmed")
        with pytest.raises(ValidationError):
            _complete(db, request, actors[Role.REGULACAO], file_store, result_upload, **overrides)
        db.refresh(request)
        assert request.status == "confirmed"
        assert request.exam_location is None

    def test_result_file_is_required(self, db, exam_type, make_request, actors, file_store):
        request = make_request(exam_type, status="confirmed")
        with pytest.raises(ValidationError):
            _complete(db, request, actors[Role.REGULACAO], file_store, None)

    def test_only_confirmed_requests_complete(self, db, exam_type, make_request, actors, file_store, result_upload):
        request = make_request(exam_type, status="accepted")
        with pytest.raises(ValidationError):
            _complete(db, request, actors[Role.REGULACAO], file_store, result_upload)

    def test_reception_cannot_complete(self, db, exam_type, make_request, actors, file_store, result_upload):
        request = make_request(exam_type, status="confirmed")
        with pytest.raises(AuthorizationError):
            _complete(db, request, actors[Role.RECEPCAO], file_store, result_upload)

    def test_failed_commit_removes_stored_result(
        self, db, exam_type, make_request, actors, file_store, result_upload, monkeypatch
    ):
        request = make_request(exam_type, status="confirmed")

        def failing_commit(session, what):
            session.rollback()
            raise CollaboratorError("Falha ao salvar no banco de dados")

        monkeypatch.setattr(lifecycle_service, "_commit", failing_commit)
        with pytest.raises(CollaboratorError):
            _complete(db, request, actors[Role.REGULACAO], file_store, result_upload)

        assert list(file_store.root.rglob("*.pdf")) == []
        db.refresh(request)
        assert request.status == "confirmed"


class TestDeletion:

    def test_delete_removes_row_and_files(self, db, exam_type, make_request, actors, file_store):
        stored = file_store.store(PDF, "pedido.pdf", "application/pdf", folder="requests/x")
        request = make_request(exam_type, status="completed", attachment_ref=stored.reference)
        request_id = request.id

        lifecycle_service.delete_request(db, request, actors[Role.REGULACAO], file_store)

        assert db.query(RequestDB).filter(RequestDB.id == request_id).first() is None
        assert list(file_store.root.rglob("*.pdf")) == []
        log = db.query(ActivityLogDB).filter(ActivityLogDB.action == "deleted").one()
        assert log.request_id is None
        assert log.patient_name == "João da Silva"

    @pytest.mark.parametrize("status", ["completed", "suspenso"])
    def test_reception_cannot_delete_closed_requests(self, db, exam_type, make_request, actors, file_store, status):
        request = make_request(exam_type, status=status)
        with pytest.raises(AuthorizationError):
            lifecycle_service.delete_request(db, request, actors[Role.RECEPCAO], file_store)
        assert db.query(RequestDB).filter(RequestDB.id == request.id).first() is not None

    def test_reception_deletes_open_request(self, db, exam_type, make_request, actors, file_store):
        request = make_request(exam_type, status="accepted")
        request_id = request.id
        lifecycle_service.delete_request(db, request, actors[Role.RECEPCAO], file_store)
        assert db.query(RequestDB).filter(RequestDB.id == request_id).first() is None


class TestForwarding:

    def test_forward_moves_request_to_target_month(self, db, exam_type, make_request, actors):
        request = make_request(exam_type, status="confirmed")
        request = lifecycle_service.forward_request(db, request, actors[Role.ADMIN], 5, 2031, "Cota esgotada")

        assert request.status == "received"
        assert request.created_at.replace(tzinfo=None) == datetime(2031, 5, 1)
        assert request.forwarded_to_month == 5
        assert request.forwarded_to_year == 2031
        assert request.forwarded_reason == "Cota esgotada"

    def test_forwarding_is_admin_only(self, db, exam_type, make_request, actors):
        request = make_request(exam_type)
        with pytest.raises(AuthorizationError):
            lifecycle_service.forward_request(db, request, actors[Role.REGULACAO], 5, 2031)

    def test_completed_requests_are_not_forwarded(self, db, exam_type, make_request, actors):
        request = make_request(exam_type, status="completed")
        with pytest.raises(ValidationError):
            lifecycle_service.forward_request(db, request, actors[Role.ADMIN], 5, 2031)


class TestDocuments:

    def test_additional_document_replaces_previous(self, db, exam_type, make_request, actors, file_store):
        request = make_request(exam_type)
        reception = actors[Role.RECEPCAO]

        request = lifecycle_service.attach_document(
            db, request, reception, DocumentSlot.ADDITIONAL_DOCUMENT, PDF, "laudo.pdf", "application/pdf", file_store
        )
        first = request.additional_document_ref
        request = lifecycle_service.attach_document(
            db, request, reception, DocumentSlot.ADDITIONAL_DOCUMENT, PDF, "laudo2.pdf", "application/pdf", file_store
        )

        assert request.additional_document_filename == "laudo2.pdf"
        assert request.additional_document_ref != first
        assert len(list(file_store.root.rglob("*.pdf"))) == 1

    def test_result_slot_is_reserved_for_completion(self, db, exam_type, make_request, actors, file_store):
        request = make_request(exam_type)
        with pytest.raises(ValidationError):
            lifecycle_service.attach_document(
                db, request, actors[Role.ADMIN], DocumentSlot.RESULT, PDF, "r.pdf", "application/pdf", file_store
            )

    def test_notes_update(self, db, exam_type, make_request, actors):
        request = make_request(exam_type)
        request = lifecycle_service.update_notes(db, request, actors[Role.RECEPCAO], "Paciente acamado")
        assert request.notes == "Paciente acamado"
