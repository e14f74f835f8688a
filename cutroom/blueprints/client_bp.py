"""
Client Blueprint: external stakeholders (managers and admins).

  GET/POST    /api/v1/clients
  GET/PUT/DEL /api/v1/clients/<id>
"""

from flask import Blueprint, g, jsonify, request

from cutroom.blueprints import json_body, paginate_query
from cutroom.middleware.jwt_auth import login_required
from cutroom.services import client_service

client_bp = Blueprint("client_bp", __name__, url_prefix="/api/v1/clients")


@client_bp.route("", methods=["GET"])
@login_required
def list_clients():
    items, total = paginate_query(client_service.list_clients(g.current_user_id, request.args.get("search")))
    return jsonify({"items": [c.to_dict(include_counts=True) for c in items], "total": total}), 200


@client_bp.route("", methods=["POST"])
@login_required
def create_client():
    client = client_service.create_client(g.current_user_id, json_body())
    return jsonify(client.to_dict(include_counts=True)), 201


@client_bp.route("/<int:client_id>", methods=["GET"])
@login_required
def get_client(client_id):
    client = client_service.get_client(g.current_user_id, client_id)
    return jsonify(client.to_dict(include_counts=True)), 200


@client_bp.route("/<int:client_id>", methods=["PUT"])
@login_required
def update_client(client_id):
    client = client_service.update_client(g.current_user_id, client_id, json_body())
    return jsonify(client.to_dict(include_counts=True)), 200


@client_bp.route("/<int:client_id>", methods=["DELETE"])
@login_required
def delete_client(client_id):
    unlinked = client_service.delete_client(g.current_user_id, client_id)
    return jsonify({"message": "Client deleted", "unlinked_projects": unlinked}), 200
