"""
Delivery Blueprint: versioned deliveries and the review workflow.

  GET/POST /api/v1/projects/<project_id>/deliveries   (JSON or multipart "file")
  GET/PUT  /api/v1/deliveries/<id>
  POST     /api/v1/deliveries/<id>/file
  GET      /api/v1/deliveries/<id>/download
  POST     /api/v1/deliveries/<id>/submit
  POST     /api/v1/deliveries/<id>/approve | reject | request-revision
  GET      /api/v1/deliveries/<id>/approvals
  GET      /api/v1/files/<token>
"""

from flask import Blueprint, g, jsonify, request, send_file
from werkzeug.utils import secure_filename

from cutroom.blueprints import json_body, paginate_query
from cutroom.core.exceptions import ValidationError
from cutroom.middleware.jwt_auth import login_required
from cutroom.services import delivery_review
from cutroom.services.delivery_review import FileUpload
from cutroom.services.file_storage import get_blob_store

delivery_bp = Blueprint("delivery_bp", __name__, url_prefix="/api/v1")


def _upload_from_request(required=False):
    file = request.files.get("file")
    if file is None:
        if required:
            raise ValidationError("A file is required", details={"file": "required"})
        return None
    return FileUpload(
        data=file.read(),
        content_type=file.mimetype,
        filename=secure_filename(file.filename or ""),
    )


def _form_or_json():
    if request.mimetype == "multipart/form-data":
        return request.form.to_dict()
    return json_body()


@delivery_bp.route("/projects/<int:project_id>/deliveries", methods=["GET"])
@login_required
def list_deliveries(project_id):
    query = delivery_review.list_deliveries(g.current_user_id, project_id, status=request.args.get("status"))
    items, total = paginate_query(query)
    return jsonify({"items": [d.to_dict() for d in items], "total": total}), 200


@delivery_bp.route("/projects/<int:project_id>/deliveries", methods=["POST"])
@login_required
def create_delivery(project_id):
    delivery = delivery_review.create_delivery(
        g.current_user_id, project_id, _form_or_json(), upload=_upload_from_request(),
    )
    return jsonify(delivery.to_dict()), 201


@delivery_bp.route("/deliveries/<int:delivery_id>", methods=["GET"])
@login_required
def get_delivery(delivery_id):
    delivery = delivery_review.get_delivery(g.current_user_id, delivery_id)
    return jsonify(delivery.to_dict(include_approvals=True)), 200


@delivery_bp.route("/deliveries/<int:delivery_id>", methods=["PUT"])
@login_required
def update_delivery(delivery_id):
    delivery = delivery_review.update_delivery(g.current_user_id, delivery_id, json_body())
    return jsonify(delivery.to_dict()), 200


@delivery_bp.route("/deliveries/<int:delivery_id>/file", methods=["POST"])
@login_required
def attach_file(delivery_id):
    delivery = delivery_review.attach_file(g.current_user_id, delivery_id, _upload_from_request(required=True))
    return jsonify(delivery.to_dict()), 200


@delivery_bp.route("/deliveries/<int:delivery_id>/download", methods=["GET"])
@login_required
def download(delivery_id):
    url = delivery_review.download_url(g.current_user_id, delivery_id)
    return jsonify({"url": url}), 200


@delivery_bp.route("/deliveries/<int:delivery_id>/submit", methods=["POST"])
@login_required
def submit(delivery_id):
    delivery = delivery_review.submit_for_review(g.current_user_id, delivery_id)
    return jsonify(delivery.to_dict()), 200


# ── Review decisions ─────────────────────────────────────────────────────────

def _decision_response(approval, delivery_id):
    delivery = delivery_review.get_delivery(g.current_user_id, delivery_id)
    return jsonify({"approval": approval.to_dict(), "delivery": delivery.to_dict()}), 200


@delivery_bp.route("/deliveries/<int:delivery_id>/approve", methods=["POST"])
@login_required
def approve(delivery_id):
    approval = delivery_review.approve(g.current_user_id, delivery_id, json_body().get("comments"))
    return _decision_response(approval, delivery_id)


@delivery_bp.route("/deliveries/<int:delivery_id>/reject", methods=["POST"])
@login_required
def reject(delivery_id):
    approval = delivery_review.reject(g.current_user_id, delivery_id, json_body().get("comments"))
    return _decision_response(approval, delivery_id)


@delivery_bp.route("/deliveries/<int:delivery_id>/request-revision", methods=["POST"])
@login_required
def request_revision(delivery_id):
    approval = delivery_review.request_revision(g.current_user_id, delivery_id, json_body().get("comments"))
    return _decision_response(approval, delivery_id)


@delivery_bp.route("/deliveries/<int:delivery_id>/approvals", methods=["GET"])
@login_required
def approvals(delivery_id):
    history = delivery_review.approval_history(g.current_user_id, delivery_id)
    return jsonify({"items": [a.to_dict() for a in history], "total": len(history)}), 200


# ── Signed local file download ───────────────────────────────────────────────

@delivery_bp.route("/files/<path:token>", methods=["GET"])
def serve_file(token):
    path = get_blob_store().resolve_token(token)
    return send_file(path, as_attachment=True, download_name=path.name)
