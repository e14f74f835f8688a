"""
Notification service tests.

Covers:
  - fan-out rows, actor exclusion, empty recipient sets
  - post-commit live push and rollback discard
  - read state: idempotent mark_read, mark_all_read, recipient scoping
"""

import pytest

from cutroom.core.exceptions import NotFoundError
from cutroom.models.audit import record_audit
from cutroom.models.notification import Notification
from cutroom.services.live_channels import get_registry
from cutroom.services.notification import NotificationEvent, NotificationService, pending_live_events
from cutroom.utils.helpers import unit_of_work


def _event(**kw):
    kw.setdefault("type", "task_assigned")
    kw.setdefault("title", "You were assigned")
    return NotificationEvent(**kw)


def _notify(recipients, exclude=None, **kw):
    with unit_of_work():
        return NotificationService.notify(recipients, _event(**kw), exclude=exclude)


# ═══════════════════════════════════════════════════════════════
# Fan-out
# ═══════════════════════════════════════════════════════════════

class TestNotify:
    def test_one_row_per_recipient(self, make_user):
        a, b, c = make_user(), make_user(), make_user()
        notified = _notify([c.id, a.id, b.id, a.id])
        assert notified == sorted([a.id, b.id, c.id])
        assert Notification.query.count() == 3
        assert {n.user_id for n in Notification.query} == {a.id, b.id, c.id}

    def test_actor_is_excluded(self, make_user):
        actor, other = make_user(), make_user()
        notified = _notify([actor.id, other.id], exclude=actor.id)
        assert notified == [other.id]
        assert Notification.query.filter_by(user_id=actor.id).count() == 0

    def test_only_the_actor_means_nothing_is_written(self, make_user):
        actor = make_user()
        assert _notify([actor.id, None], exclude=actor.id) == []
        assert Notification.query.count() == 0

    def test_reference_fields_are_persisted(self, make_user):
        user = make_user()
        _notify([user.id], type="mention", title="Mentioned", message="hi", reference_type="task", reference_id=7)
        row = Notification.query.one()
        assert (row.type, row.reference_type, row.reference_id) == ("mention", "task", 7)
        assert row.is_read is False


# ═══════════════════════════════════════════════════════════════
# Live push
# ═══════════════════════════════════════════════════════════════

class TestLivePush:
    def test_push_happens_after_commit(self, make_user):
        user = make_user()
        registry = get_registry()
        conn = registry.connect(user.id)

        with unit_of_work():
            NotificationService.notify([user.id], _event(reference_type="task", reference_id=3))
            record_audit(actor_id=user.id, action="task.assign", entity_type="task", entity_id=3)
            assert registry.drain(conn) == []
            assert len(pending_live_events()) == 1

        events = registry.drain(conn)
        assert [e.name for e in events] == ["notification"]
        assert events[0].data["type"] == "task_assigned"
        assert events[0].data["reference_id"] == 3
        assert pending_live_events() == []

    def test_rollback_discards_push_and_rows(self, make_user):
        user = make_user()
        registry = get_registry()
        conn = registry.connect(user.id)

        with pytest.raises(RuntimeError):
            with unit_of_work():
                NotificationService.notify([user.id], _event())
                raise RuntimeError("abort")

        assert registry.drain(conn) == []
        assert pending_live_events() == []
        assert Notification.query.count() == 0

    def test_project_broadcast_reaches_project_viewers(self, make_user, make_project):
        manager, viewer = make_user(role="manager"), make_user()
        project = make_project(manager, members={viewer: "editor"})
        registry = get_registry()
        conn = registry.connect(viewer.id)
        registry.join_project_channel(conn, project.id)
        bystander = registry.connect(manager.id)

        with unit_of_work():
            NotificationService.broadcast_to_project(project.id, "task_created", {"task": {"id": 1}})

        assert [e.name for e in registry.drain(conn)] == ["task_created"]
        assert registry.drain(bystander) == []
        assert Notification.query.count() == 0

    def test_team_only_broadcast_skips_viewers_outside_the_team(self, make_user, make_project):
        manager, editor = make_user(role="manager"), make_user()
        project = make_project(manager, members={editor: "editor"})
        registry = get_registry()
        team_conn, viewer_conn = registry.connect(editor.id), registry.connect(manager.id)
        registry.join_project_channel(team_conn, project.id, team=True)
        registry.join_project_channel(viewer_conn, project.id)

        with unit_of_work():
            NotificationService.broadcast_to_project(project.id, "task_created", {"task": {"id": 1}}, team_only=True)

        assert [e.name for e in registry.drain(team_conn)] == ["task_created"]
        assert registry.drain(viewer_conn) == []


# ═══════════════════════════════════════════════════════════════
# Read state
# ═══════════════════════════════════════════════════════════════

class TestReadState:
    def test_mark_read_is_idempotent(self, make_user):
        user = make_user()
        _notify([user.id])
        notif = Notification.query.one()

        first = NotificationService.mark_read(notif.id, user.id)
        read_at = first.read_at
        second = NotificationService.mark_read(notif.id, user.id)
        assert second.is_read is True
        assert second.read_at == read_at
        assert NotificationService.unread_count(user.id) == 0

    def test_only_the_recipient_may_mark_read(self, make_user):
        owner, other = make_user(), make_user()
        _notify([owner.id])
        notif = Notification.query.one()
        with pytest.raises(NotFoundError):
            NotificationService.mark_read(notif.id, other.id)
        with pytest.raises(NotFoundError):
            NotificationService.mark_read(999999, owner.id)

    def test_mark_all_read(self, make_user):
        user, other = make_user(), make_user()
        for _ in range(3):
            _notify([user.id, other.id])
        assert NotificationService.mark_all_read(user.id) == 3
        assert NotificationService.mark_all_read(user.id) == 0
        assert NotificationService.unread_count(other.id) == 3

    def test_list_newest_first_with_total(self, make_user):
        user = make_user()
        for i in range(4):
            _notify([user.id], title=f"n{i}")
        items, total = NotificationService.list_for_user(user.id, limit=2)
        assert total == 4
        assert [n.title for n in items] == ["n3", "n2"]

        NotificationService.mark_read(items[0].id, user.id)
        unread, unread_total = NotificationService.list_for_user(user.id, unread_only=True)
        assert unread_total == 3
        assert all(not n.is_read for n in unread)
