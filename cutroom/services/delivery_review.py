"""
Delivery review workflow.

State machine per DeliveryJob:

    pending ──attach file──▶ uploaded ──submit──▶ in_review
    in_review ──approve──────────▶ approved            (terminal)
    in_review ──reject───────────▶ rejected            (terminal)
    in_review ──request_revision─▶ revision_requested

Rejections and revision requests never touch the stored file; the
uploader answers with a new DeliveryJob, i.e. the next version.

Every decision appends an Approval row and updates the delivery's
status/reviewer/notes in the same transaction.  The status check reads
without a row lock, so two reviewers racing on one in_review delivery
both succeed: both Approval rows are kept and the last committed status
wins.

Transaction policy: each public operation is one ``unit_of_work()``;
notifications are written in it and pushed live after commit.
"""

import logging
from dataclasses import dataclass

from flask import current_app
from sqlalchemy import func

from cutroom.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from cutroom.models import db
from cutroom.models.audit import record_audit
from cutroom.models.auth import User
from cutroom.models.delivery import Approval, DeliveryJob
from cutroom.models.project import Client, Project, ProjectMember
from cutroom.services.file_storage import check_upload, get_blob_store
from cutroom.services.notification import NotificationEvent, NotificationService
from cutroom.services.permission_service import Action, require, resolve_resource
from cutroom.utils.helpers import get_or_raise, unit_of_work

logger = logging.getLogger(__name__)

# verdict → (resulting status, notification type, past-tense label)
DECISIONS = {
    "approved": ("approved", "delivery_approved", "approved"),
    "rejected": ("rejected", "delivery_rejected", "rejected"),
    "revision": ("revision_requested", "revision_requested", "sent back for revision"),
}
REVIEWABLE_STATUS = "in_review"


@dataclass
class FileUpload:
    data: bytes
    content_type: str
    filename: str = ""


def _delivery_event(delivery: DeliveryJob, **extra):
    payload = {
        "delivery_id": delivery.id,
        "project_id": delivery.project_id,
        "version": delivery.version,
        "status": delivery.status,
    }
    payload.update(extra)
    return payload


def project_manager_ids(project_id) -> list[int]:
    return list(db.session.execute(
        db.select(ProjectMember.user_id).filter_by(project_id=project_id, role="manager")
    ).scalars())


def client_user_ids(project_id) -> list[int]:
    """Active accounts whose email matches the project's linked Client."""
    return list(db.session.execute(
        db.select(User.id)
        .join(Client, func.lower(User.email) == func.lower(Client.email))
        .join(Project, Project.client_id == Client.id)
        .where(Project.id == project_id, User.is_active.is_(True))
    ).scalars())


def next_version(project_id) -> int:
    current = db.session.execute(
        db.select(func.max(DeliveryJob.version)).where(DeliveryJob.project_id == project_id)
    ).scalar_one()
    return (current or 0) + 1


def _store_upload(project_id, upload: FileUpload):
    check_upload(upload.data, upload.content_type, current_app.config.get("MAX_UPLOAD_BYTES"))
    return get_blob_store().put(
        upload.data, upload.content_type,
        key_prefix=f"projects/{project_id}/deliveries", filename=upload.filename,
    )


def _discard_blob(reference):
    try:
        get_blob_store().delete(reference)
    except Exception:
        logger.warning("Could not remove orphaned blob %s", reference, exc_info=True)


# ── Queries ──────────────────────────────────────────────────────────────────

def list_deliveries(actor_id, project_id, status=None):
    require(actor_id, Action.VIEW_DELIVERIES, resolve_resource("project", project_id))
    q = DeliveryJob.query.filter_by(project_id=project_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(DeliveryJob.version.desc())


def get_delivery(actor_id, delivery_id) -> DeliveryJob:
    require(actor_id, Action.VIEW_DELIVERIES, resolve_resource("delivery", delivery_id))
    return get_or_raise(DeliveryJob, delivery_id, "Delivery")


def approval_history(actor_id, delivery_id) -> list[Approval]:
    delivery = get_delivery(actor_id, delivery_id)
    return delivery.approvals.all()


def download_url(actor_id, delivery_id) -> str:
    delivery = get_delivery(actor_id, delivery_id)
    if not delivery.file_url:
        raise NotFoundError("File")
    if delivery.file_url.startswith(("http://", "https://")):
        return delivery.file_url
    return get_blob_store().url_for(delivery.file_url)


# ── Upload side ──────────────────────────────────────────────────────────────

def create_delivery(actor_id, project_id, data: dict, upload: FileUpload | None = None) -> DeliveryJob:
    """Register a new delivery version for a project.

    ``upload`` stores the bytes in the blob store; alternatively
    ``data["file_url"]`` may name an externally hosted file.  Either one
    makes the initial status ``uploaded``; neither leaves it ``pending``.
    """
    require(actor_id, Action.UPLOAD_DELIVERY, resolve_resource("project", project_id))

    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("Delivery title is required.", details={"title": "required"})

    reference = _store_upload(project_id, upload) if upload else None
    file_url = reference or (data.get("file_url") or "").strip() or None

    try:
        with unit_of_work():
            db.session.execute(
                db.select(Project.id).where(Project.id == project_id).with_for_update()
            ).first()
            delivery = DeliveryJob(
                project_id=project_id,
                title=title,
                description=data.get("description") or "",
                format=data.get("format"),
                file_url=file_url,
                file_name=upload.filename if upload else data.get("file_name"),
                file_size=len(upload.data) if upload else data.get("file_size"),
                content_type=upload.content_type if upload else None,
                version=next_version(project_id),
                status="uploaded" if file_url else "pending",
                uploaded_by=actor_id,
            )
            db.session.add(delivery)
            db.session.flush()

            NotificationService.notify(
                project_manager_ids(project_id),
                NotificationEvent(
                    type="delivery_uploaded",
                    title=f"New delivery: {title} (v{delivery.version})",
                    message=f"Version {delivery.version} was uploaded.",
                    reference_type="delivery",
                    reference_id=delivery.id,
                    data={"project_id": project_id},
                ),
                exclude=actor_id,
            )
            NotificationService.broadcast_to_project(
                project_id, "delivery_created", _delivery_event(delivery, title=title),
            )
            record_audit(
                actor_id=actor_id, action="delivery.create", entity_type="delivery",
                entity_id=delivery.id, project_id=project_id,
                details={"version": delivery.version, "status": delivery.status},
            )
    except Exception:
        if reference:
            _discard_blob(reference)
        raise

    logger.info("Delivery %s v%s created", delivery.id, delivery.version,
                extra={"project_id": project_id, "user_id": actor_id})
    return delivery


def attach_file(actor_id, delivery_id, upload: FileUpload) -> DeliveryJob:
    """pending → uploaded."""
    ref = resolve_resource("delivery", delivery_id)
    require(actor_id, Action.UPDATE_DELIVERY, ref)
    delivery = get_or_raise(DeliveryJob, delivery_id, "Delivery")
    if delivery.status != "pending":
        raise InvalidTransitionError(delivery.status, "uploaded")

    reference = _store_upload(delivery.project_id, upload)
    try:
        with unit_of_work():
            delivery.file_url = reference
            delivery.file_name = upload.filename
            delivery.file_size = len(upload.data)
            delivery.content_type = upload.content_type
            delivery.status = "uploaded"
            db.session.flush()
            NotificationService.broadcast_to_project(
                delivery.project_id, "delivery_status_changed", _delivery_event(delivery),
            )
            record_audit(
                actor_id=actor_id, action="delivery.attach_file", entity_type="delivery",
                entity_id=delivery.id, project_id=delivery.project_id,
                details={"file_size": delivery.file_size},
            )
    except Exception:
        _discard_blob(reference)
        raise
    return delivery


def update_delivery(actor_id, delivery_id, data: dict) -> DeliveryJob:
    """Edit descriptive fields.  Status only changes through the workflow."""
    require(actor_id, Action.UPDATE_DELIVERY, resolve_resource("delivery", delivery_id))
    delivery = get_or_raise(DeliveryJob, delivery_id, "Delivery")
    if "status" in data:
        raise ValidationError(
            "Status cannot be edited directly; use submit/approve/reject/request-revision.",
            details={"status": "read-only"},
        )
    with unit_of_work():
        if "title" in data:
            title = (data.get("title") or "").strip()
            if not title:
                raise ValidationError("Delivery title is required.", details={"title": "required"})
            delivery.title = title
        if "description" in data:
            delivery.description = data.get("description") or ""
        if "format" in data:
            delivery.format = data.get("format")
        db.session.flush()
        record_audit(
            actor_id=actor_id, action="delivery.update", entity_type="delivery",
            entity_id=delivery.id, project_id=delivery.project_id,
            details={k: data[k] for k in ("title", "description", "format") if k in data},
        )
    return delivery


def submit_for_review(actor_id, delivery_id) -> DeliveryJob:
    """uploaded → in_review; asks project managers and the client to review."""
    require(actor_id, Action.SUBMIT_DELIVERY, resolve_resource("delivery", delivery_id))
    with unit_of_work():
        delivery = get_or_raise(DeliveryJob, delivery_id, "Delivery")
        if delivery.status != "uploaded":
            raise InvalidTransitionError(delivery.status, REVIEWABLE_STATUS)
        delivery.status = REVIEWABLE_STATUS
        db.session.flush()

        reviewers = set(project_manager_ids(delivery.project_id)) | set(client_user_ids(delivery.project_id))
        NotificationService.notify(
            reviewers,
            NotificationEvent(
                type="approval_requested",
                title=f"Review requested: {delivery.title} (v{delivery.version})",
                message="A delivery is waiting for your review.",
                reference_type="delivery",
                reference_id=delivery.id,
                data={"project_id": delivery.project_id},
            ),
            exclude=actor_id,
        )
        NotificationService.broadcast_to_project(
            delivery.project_id, "delivery_status_changed", _delivery_event(delivery),
        )
        record_audit(
            actor_id=actor_id, action="delivery.submit", entity_type="delivery",
            entity_id=delivery.id, project_id=delivery.project_id,
        )
    return delivery


# ── Review decisions ─────────────────────────────────────────────────────────

def _decide(reviewer_id, delivery_id, verdict, comments) -> Approval:
    ref = resolve_resource("delivery", delivery_id)
    require(reviewer_id, Action.REVIEW_DELIVERY, ref,
            message="Only project managers and the client can review deliveries.")

    comments = (comments or "").strip() or None
    if verdict != "approved" and not comments:
        label = "rejecting a delivery" if verdict == "rejected" else "requesting a revision"
        raise ValidationError(f"Comments are required when {label}.", details={"comments": "required"})

    new_status, notification_type, label = DECISIONS[verdict]

    with unit_of_work():
        delivery = get_or_raise(DeliveryJob, delivery_id, "Delivery")
        if delivery.status != REVIEWABLE_STATUS:
            raise InvalidTransitionError(delivery.status, new_status)

        approval = Approval(
            delivery_id=delivery.id, verdict=verdict, reviewer_id=reviewer_id, comments=comments,
        )
        db.session.add(approval)
        delivery.status = new_status
        delivery.reviewed_by = reviewer_id
        delivery.review_notes = comments
        db.session.flush()

        NotificationService.notify(
            [delivery.uploaded_by],
            NotificationEvent(
                type=notification_type,
                title=f"Delivery {label}: {delivery.title} (v{delivery.version})",
                message=comments or "",
                reference_type="delivery",
                reference_id=delivery.id,
                data={"project_id": delivery.project_id, "verdict": verdict},
            ),
            exclude=reviewer_id,
        )
        NotificationService.broadcast_to_project(
            delivery.project_id, "approval_submitted",
            {"approval": approval.to_dict(), "delivery_id": delivery.id},
        )
        NotificationService.broadcast_to_project(
            delivery.project_id, "delivery_status_changed", _delivery_event(delivery),
        )
        record_audit(
            actor_id=reviewer_id, action=f"delivery.{verdict}", entity_type="delivery",
            entity_id=delivery.id, project_id=delivery.project_id,
            details={"verdict": verdict, "comments": comments, "version": delivery.version},
        )

    logger.info("Delivery %s %s by user %s", delivery_id, verdict, reviewer_id,
                extra={"project_id": ref.project_id, "user_id": reviewer_id})
    return approval


def approve(reviewer_id, delivery_id, comments=None) -> Approval:
    return _decide(reviewer_id, delivery_id, "approved", comments)


def reject(reviewer_id, delivery_id, comments) -> Approval:
    return _decide(reviewer_id, delivery_id, "rejected", comments)


def request_revision(reviewer_id, delivery_id, comments) -> Approval:
    return _decide(reviewer_id, delivery_id, "revision", comments)
