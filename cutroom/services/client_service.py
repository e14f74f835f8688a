"""
Client service: external stakeholders.

Deleting a client keeps its projects; their ``client_id`` goes to NULL,
which also ends the email-based client access to them.
"""

import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import or_, update

from cutroom.core.exceptions import ValidationError
from cutroom.models import db
from cutroom.models.audit import record_audit
from cutroom.models.project import Client, Project
from cutroom.services.permission_service import Action, require
from cutroom.utils.helpers import get_or_raise, unit_of_work

logger = logging.getLogger(__name__)

_FIELDS = ("name", "company", "email", "phone", "notes")


def _clean(data: dict, partial=False) -> dict:
    values = {}
    if not partial or "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Client name is required.", details={"name": "required"})
        values["name"] = name
    if "email" in data:
        email = (data.get("email") or "").strip()
        if email:
            try:
                email = validate_email(email, check_deliverability=False).normalized.lower()
            except EmailNotValidError as e:
                raise ValidationError(f"Invalid email: {e}", details={"email": "invalid"}) from None
        values["email"] = email or None
    for key in ("company", "phone", "notes"):
        if key in data:
            values[key] = data.get(key) or ("" if key == "notes" else None)
    return values


def list_clients(actor_id, search=None):
    require(actor_id, Action.MANAGE_CLIENTS)
    q = Client.query
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(Client.name.ilike(like), Client.company.ilike(like), Client.email.ilike(like)))
    return q.order_by(Client.name, Client.id)


def get_client(actor_id, client_id) -> Client:
    require(actor_id, Action.MANAGE_CLIENTS)
    return get_or_raise(Client, client_id, "Client")


def create_client(actor_id, data: dict) -> Client:
    require(actor_id, Action.MANAGE_CLIENTS)
    values = _clean(data)
    with unit_of_work():
        client = Client(created_by=actor_id, **values)
        db.session.add(client)
        db.session.flush()
        record_audit(
            actor_id=actor_id, action="client.create", entity_type="client", entity_id=client.id,
            details={"name": client.name},
        )
    return client


def update_client(actor_id, client_id, data: dict) -> Client:
    require(actor_id, Action.MANAGE_CLIENTS)
    values = _clean(data, partial=True)
    with unit_of_work():
        client = get_or_raise(Client, client_id, "Client")
        for key, value in values.items():
            setattr(client, key, value)
        db.session.flush()
        record_audit(
            actor_id=actor_id, action="client.update", entity_type="client", entity_id=client.id,
            details={k: v for k, v in values.items() if k in _FIELDS},
        )
    return client


def delete_client(actor_id, client_id) -> int:
    """Delete a client; returns how many projects were unlinked."""
    require(actor_id, Action.DELETE_CLIENT)
    with unit_of_work():
        client = get_or_raise(Client, client_id, "Client")
        unlinked = db.session.execute(
            update(Project).where(Project.client_id == client_id).values(client_id=None)
        ).rowcount
        db.session.delete(client)
        db.session.flush()
        record_audit(
            actor_id=actor_id, action="client.delete", entity_type="client", entity_id=client_id,
            details={"name": client.name, "unlinked_projects": unlinked},
        )
    logger.info("Client %s deleted, %d project(s) unlinked", client_id, unlinked, extra={"user_id": actor_id})
    return unlinked
