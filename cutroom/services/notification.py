"""
Cutroom Collaboration Platform
Notification Service.

Fan-out contract:
    - ``notify`` bulk-inserts one Notification row per recipient inside the
      caller's transaction (a single INSERT … executemany, not one round-trip
      per recipient).
    - Live pushes are queued on the session and emitted by the
      ``after_commit`` hook; a top-level rollback discards them.  The push is
      advisory: a client that was offline sees the persisted row on its next
      poll.
    - Callers pass ``exclude=actor_id`` so nobody is notified about their own
      action.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from flask import has_app_context
from sqlalchemy import event, insert
from sqlalchemy.orm import Session as _SASession

from cutroom.core.exceptions import NotFoundError
from cutroom.models import db
from cutroom.models.notification import Notification
from cutroom.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

_PENDING_KEY = "cutroom.pending_live"


@dataclass
class NotificationEvent:
    type: str
    title: str
    message: str = ""
    reference_type: str | None = None
    reference_id: int | None = None
    data: dict = field(default_factory=dict)

    def live_payload(self):
        payload = {
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
        }
        payload.update(self.data)
        return payload


# ── Post-commit live dispatch ────────────────────────────────────────────────

def _queue_live(scope, target, name, payload):
    db.session.info.setdefault(_PENDING_KEY, []).append((scope, target, name, payload))


def pending_live_events():
    """Live emits waiting for the current transaction to commit."""
    return list(db.session.info.get(_PENDING_KEY, ()))


@event.listens_for(_SASession, "after_commit")
def _dispatch_live(session):
    # Also fires on SAVEPOINT release (audit writes); wait for the outer commit.
    if session.in_nested_transaction():
        return
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending or not has_app_context():
        return
    from cutroom.services.live_channels import get_registry

    registry = get_registry()
    for scope, target, name, payload in pending:
        if scope == "user":
            registry.emit_to_user(target, name, payload)
        else:
            registry.emit_to_project(target, name, payload, team_only=scope == "team")


@event.listens_for(_SASession, "after_soft_rollback")
def _discard_live(session, previous_transaction):
    if previous_transaction.nested:
        return
    dropped = session.info.pop(_PENDING_KEY, None)
    if dropped:
        logger.debug("Discarded %d live events after rollback", len(dropped))


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Fan-out ───────────────────────────────────────────────────────────

    @staticmethod
    def notify(recipient_ids, notification: NotificationEvent, *, exclude=None):
        """
        Persist one row per recipient and queue a personal live push each.

        Args:
            recipient_ids: iterable of user ids; None entries are ignored.
            notification: what happened.
            exclude: the acting user, removed from the recipient set.

        Returns:
            Sorted list of user ids that were notified.
        """
        recipients = sorted({int(r) for r in recipient_ids if r is not None} - {exclude})
        if not recipients:
            return []

        now = datetime.now(timezone.utc)
        rows = [
            {
                "user_id": uid,
                "type": notification.type,
                "title": notification.title[:300],
                "message": notification.message,
                "reference_type": notification.reference_type,
                "reference_id": notification.reference_id,
                "is_read": False,
                "created_at": now,
            }
            for uid in recipients
        ]
        db.session.execute(insert(Notification), rows)

        payload = notification.live_payload()
        for uid in recipients:
            _queue_live("user", uid, "notification", payload)

        logger.debug(
            "Queued %s notification for %d recipient(s)", notification.type, len(recipients),
            extra={"event_type": notification.type},
        )
        return recipients

    @staticmethod
    def broadcast_to_project(project_id, event_name, payload, team_only=False):
        """Project-room push (no Notification rows), sent after commit.

        *team_only* limits the push to viewers who may see tasks, so task
        data never reaches client-linked accounts.
        """
        _queue_live("team" if team_only else "project", project_id, event_name, payload)

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=50, offset=0):
        """Notifications for one recipient, newest first.  Returns (items, total)."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark one notification read.  Idempotent; only the recipient may do it."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            raise NotFoundError("Notification", notification_id)
        if not notif.is_read:
            notif.mark_read()
            commit_or_raise()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark every unread notification of *user_id* read; returns the count."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query.filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        commit_or_raise()
        return count
