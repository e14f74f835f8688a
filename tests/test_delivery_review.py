"""
Delivery review workflow tests.

Covers:
  - version numbering per project
  - pending → uploaded → in_review → decision
  - reject / revision comment requirement
  - reviewer authorization (project manager or client)
  - notification fan-out for decisions and review requests
  - blob-backed uploads and download URLs
"""

from pathlib import Path

import pytest
from flask import current_app

from cutroom.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from cutroom.models import db
from cutroom.models.delivery import Approval, DeliveryJob
from cutroom.models.notification import Notification
from cutroom.services import delivery_review
from cutroom.services.delivery_review import FileUpload
from cutroom.utils.helpers import unit_of_work


@pytest.fixture()
def crew(make_user, make_project, make_client_org):
    manager = make_user(role="manager")
    editor = make_user(role="editor")
    client_user = make_user(role="client", email="brand@client.test")
    org = make_client_org("brand@client.test")
    project = make_project(manager, members={editor: "editor"}, client=org)
    return manager, editor, client_user, project


def _notifications(user, type_=None):
    q = Notification.query.filter_by(user_id=user.id)
    if type_:
        q = q.filter_by(type=type_)
    return q.all()


# ═══════════════════════════════════════════════════════════════
# Creation + versions
# ═══════════════════════════════════════════════════════════════

class TestCreate:
    def test_versions_increase_per_project(self, crew, make_project):
        manager, editor, _, project = crew
        versions = [
            delivery_review.create_delivery(editor.id, project.id, {"title": f"Cut {i}"}).version
            for i in range(3)
        ]
        assert versions == [1, 2, 3]

        other = make_project(manager)
        assert delivery_review.create_delivery(manager.id, other.id, {"title": "Other"}).version == 1

    def test_status_depends_on_file(self, crew):
        _, editor, _, project = crew
        pending = delivery_review.create_delivery(editor.id, project.id, {"title": "Rough"})
        linked = delivery_review.create_delivery(
            editor.id, project.id, {"title": "Fine", "file_url": "https://cdn.example.com/fine.mov"},
        )
        assert pending.status == "pending"
        assert pending.file_url is None
        assert linked.status == "uploaded"

    def test_managers_notified_of_upload(self, crew):
        manager, editor, _, project = crew
        delivery_review.create_delivery(editor.id, project.id, {"title": "Rough"})
        assert len(_notifications(manager, "delivery_uploaded")) == 1
        assert _notifications(editor) == []

    def test_title_required(self, crew):
        _, editor, _, project = crew
        with pytest.raises(ValidationError):
            delivery_review.create_delivery(editor.id, project.id, {"title": "  "})

    def test_client_cannot_upload(self, crew):
        _, _, client_user, project = crew
        with pytest.raises(ForbiddenError):
            delivery_review.create_delivery(client_user.id, project.id, {"title": "Nope"})

    def test_duplicate_version_is_a_conflict(self, crew, make_delivery):
        _, editor, _, project = crew
        existing = make_delivery(project, editor)
        with pytest.raises(ConflictError):
            with unit_of_work():
                db.session.add(DeliveryJob(
                    project_id=project.id, title="Dup", version=existing.version,
                    status="pending", uploaded_by=editor.id,
                ))
        assert DeliveryJob.query.filter_by(project_id=project.id).count() == 1


# ═══════════════════════════════════════════════════════════════
# Blob-backed uploads
# ═══════════════════════════════════════════════════════════════

class TestUploads:
    def test_upload_stores_blob_and_issues_download_url(self, crew):
        _, editor, client_user, project = crew
        upload = FileUpload(data=b"\x00\x00\x00\x18ftypmp42", content_type="video/mp4", filename="cut.mp4")
        delivery = delivery_review.create_delivery(editor.id, project.id, {"title": "Cut"}, upload=upload)

        assert delivery.status == "uploaded"
        assert delivery.file_url.startswith(f"projects/{project.id}/deliveries/")
        assert delivery.file_url.endswith(".mp4")
        assert delivery.file_size == len(upload.data)
        stored = Path(current_app.config["UPLOAD_DIR"]) / delivery.file_url
        assert stored.read_bytes() == upload.data

        url = delivery_review.download_url(client_user.id, delivery.id)
        assert url.startswith("/api/v1/files/")

    def test_disallowed_content_type(self, crew):
        _, editor, _, project = crew
        with pytest.raises(ValidationError):
            delivery_review.create_delivery(
                editor.id, project.id, {"title": "Cut"},
                upload=FileUpload(data=b"#!/bin/sh", content_type="application/x-sh", filename="x.sh"),
            )
        assert DeliveryJob.query.count() == 0

    def test_attach_file_moves_pending_to_uploaded(self, crew):
        _, editor, _, project = crew
        delivery = delivery_review.create_delivery(editor.id, project.id, {"title": "Rough"})
        updated = delivery_review.attach_file(
            editor.id, delivery.id, FileUpload(data=b"%PDF-1.4", content_type="application/pdf", filename="notes.pdf"),
        )
        assert updated.status == "uploaded"
        assert updated.file_name == "notes.pdf"

        with pytest.raises(InvalidTransitionError):
            delivery_review.attach_file(
                editor.id, delivery.id, FileUpload(data=b"%PDF-1.4", content_type="application/pdf"),
            )

    def test_external_url_is_returned_as_is(self, crew, make_delivery):
        manager, editor, _, project = crew
        delivery = make_delivery(project, editor, file_url="https://cdn.example.com/master.mov")
        assert delivery_review.download_url(manager.id, delivery.id) == "https://cdn.example.com/master.mov"

    def test_pending_delivery_has_no_download(self, crew, make_delivery):
        manager, editor, _, project = crew
        delivery = make_delivery(project, editor, status="pending")
        with pytest.raises(NotFoundError):
            delivery_review.download_url(manager.id, delivery.id)


# ═══════════════════════════════════════════════════════════════
# Submission
# ═══════════════════════════════════════════════════════════════

class TestSubmit:
    def test_submit_requests_review_from_managers_and_client(self, crew, make_delivery):
        manager, editor, client_user, project = crew
        delivery = make_delivery(project, editor)

        submitted = delivery_review.submit_for_review(editor.id, delivery.id)
        assert submitted.status == "in_review"
        assert len(_notifications(manager, "approval_requested")) == 1
        assert len(_notifications(client_user, "approval_requested")) == 1
        assert _notifications(editor) == []

    def test_pending_cannot_be_submitted(self, crew, make_delivery):
        _, editor, _, project = crew
        delivery = make_delivery(project, editor, status="pending")
        with pytest.raises(InvalidTransitionError):
            delivery_review.submit_for_review(editor.id, delivery.id)

    def test_status_is_not_directly_editable(self, crew, make_delivery):
        manager, editor, _, project = crew
        delivery = make_delivery(project, editor)
        with pytest.raises(ValidationError):
            delivery_review.update_delivery(manager.id, delivery.id, {"status": "approved"})
        assert db.session.get(DeliveryJob, delivery.id).status == "uploaded"


# ═══════════════════════════════════════════════════════════════
# Decisions
# ═══════════════════════════════════════════════════════════════

class TestDecisions:
    def test_scenario_c_reject_with_comments(self, crew, make_delivery):
        manager, editor, _, project = crew
        delivery = make_delivery(project, editor, status="in_review")

        approval = delivery_review.reject(manager.id, delivery.id, "Audio out of sync at 01:12")

        refreshed = db.session.get(DeliveryJob, delivery.id)
        assert refreshed.status == "rejected"
        assert refreshed.reviewed_by == manager.id
        assert refreshed.review_notes == "Audio out of sync at 01:12"
        approvals = Approval.query.filter_by(delivery_id=delivery.id).all()
        assert len(approvals) == 1
        assert approvals[0].id == approval.id
        assert approvals[0].verdict == "rejected"
        assert len(_notifications(editor)) == 1
        assert _notifications(editor)[0].type == "delivery_rejected"
        assert _notifications(manager) == []

    @pytest.mark.parametrize("comments", [None, "", "   "])
    def test_scenario_d_reject_without_comments(self, crew, make_delivery, comments):
        manager, editor, _, project = crew
        delivery = make_delivery(project, editor, status="in_review")

        with pytest.raises(ValidationError):
            delivery_review.reject(manager.id, delivery.id, comments)

        assert db.session.get(DeliveryJob, delivery.id).status == "in_review"
        assert Approval.query.count() == 0
        assert _notifications(editor) == []

    def test_revision_requires_comments(self, crew, make_delivery):
        manager, editor, _, project = crew
        delivery = make_delivery(project, editor, status="in_review")
        with pytest.raises(ValidationError):
            delivery_review.request_revision(manager.id, delivery.id, "")

        delivery_review.request_revision(manager.id, delivery.id, "Tighten the intro")
        assert db.session.get(DeliveryJob, delivery.id).status == "revision_requested"
        assert _notifications(editor)[0].type == "revision_requested"

    def test_approve_without_comments(self, crew, make_delivery):
        manager, editor, _, project = crew
        delivery = make_delivery(project, editor, status="in_review")
        approval = delivery_review.approve(manager.id, delivery.id)
        assert approval.comments is None
        assert db.session.get(DeliveryJob, delivery.id).status == "approved"
        assert _notifications(editor)[0].type == "delivery_approved"

    def test_client_may_review(self, crew, make_delivery):
        _, editor, client_user, project = crew
        delivery = make_delivery(project, editor, status="in_review")
        approval = delivery_review.approve(client_user.id, delivery.id, "Love it")
        assert approval.reviewer_id == client_user.id

    def test_editor_may_not_review(self, crew, make_delivery):
        _, editor, _, project = crew
        delivery = make_delivery(project, editor, status="in_review")
        with pytest.raises(ForbiddenError):
            delivery_review.approve(editor.id, delivery.id)
        assert Approval.query.count() == 0

    @pytest.mark.parametrize("status", ["pending", "uploaded", "approved", "rejected", "revision_requested"])
    def test_decisions_only_from_in_review(self, crew, make_delivery, status):
        manager, editor, _, project = crew
        delivery = make_delivery(project, editor, status=status)
        with pytest.raises(InvalidTransitionError):
            delivery_review.approve(manager.id, delivery.id)
        assert db.session.get(DeliveryJob, delivery.id).status == status
        assert Approval.query.count() == 0

    def test_second_decision_on_same_version_is_rejected(self, crew, make_delivery):
        manager, editor, client_user, project = crew
        delivery = make_delivery(project, editor, status="in_review")
        delivery_review.approve(manager.id, delivery.id)
        with pytest.raises(InvalidTransitionError):
            delivery_review.reject(client_user.id, delivery.id, "Too late")
        assert db.session.get(DeliveryJob, delivery.id).status == "approved"

    def test_history_spans_revision_cycles(self, crew, make_delivery):
        manager, editor, _, project = crew
        first = make_delivery(project, editor, status="in_review")
        delivery_review.request_revision(manager.id, first.id, "Shorter")
        second = delivery_review.create_delivery(
            editor.id, project.id, {"title": "Shorter cut", "file_url": "https://cdn.example.com/v2.mp4"},
        )
        delivery_review.submit_for_review(editor.id, second.id)
        delivery_review.approve(manager.id, second.id, "Ship it")

        assert second.version == first.version + 1
        assert [a.verdict for a in delivery_review.approval_history(manager.id, first.id)] == ["revision"]
        assert [a.verdict for a in delivery_review.approval_history(manager.id, second.id)] == ["approved"]
