"""
Audit trail tests.

Covers:
  - service operations append audit rows in their own transaction
  - a failed audit write never aborts the surrounding operation
"""

import json

import pytest
from sqlalchemy.exc import SQLAlchemyError

from cutroom.models import db
from cutroom.models.audit import AuditLog, record_audit
from cutroom.models.project import Client
from cutroom.services import client_service, task_service
from cutroom.utils.helpers import unit_of_work


class TestRecordAudit:
    def test_row_is_written(self, make_user):
        user = make_user()
        with unit_of_work():
            log = record_audit(
                actor_id=user.id, action="project.update", entity_type="project", entity_id=4,
                project_id=4, details={"name": "New"},
            )
        assert log is not None
        row = AuditLog.query.one()
        assert row.entity_id == "4"
        assert json.loads(row.details_json) == {"name": "New"}

    def test_rolled_back_with_the_operation(self, make_user):
        user = make_user()
        with pytest.raises(RuntimeError):
            with unit_of_work():
                record_audit(actor_id=user.id, action="x", entity_type="project")
                raise RuntimeError("abort")
        assert AuditLog.query.count() == 0

    def test_audit_after_other_writes_rolls_back_with_them(self, make_user):
        user = make_user()
        with pytest.raises(RuntimeError):
            with unit_of_work():
                db.session.add(Client(name="Temp"))
                db.session.flush()
                record_audit(actor_id=user.id, action="client.create", entity_type="client")
                raise RuntimeError("abort")
        assert AuditLog.query.count() == 0
        assert Client.query.count() == 0


class TestAuditFailureIsolation:
    def test_failed_insert_rolls_back_only_its_savepoint(self, make_user):
        user = make_user()
        with unit_of_work():
            db.session.add(Client(name="Kept"))
            db.session.flush()
            assert record_audit(actor_id=999999, action="client.create", entity_type="client") is None
            record_audit(actor_id=user.id, action="client.create", entity_type="client")

        assert [c.name for c in Client.query] == ["Kept"]
        assert [a.user_id for a in AuditLog.query] == [user.id]

    def test_operation_survives_audit_failure(self, make_user, monkeypatch):
        manager = make_user(role="manager")

        def _broken_savepoint(*args, **kwargs):
            raise SQLAlchemyError("audit table unavailable")

        monkeypatch.setattr(db.session, "begin_nested", _broken_savepoint)
        client = client_service.create_client(manager.id, {"name": "Northwind"})
        monkeypatch.undo()

        assert db.session.get(Client, client.id).name == "Northwind"
        assert AuditLog.query.count() == 0


class TestServiceAuditing:
    def test_task_lifecycle_is_audited(self, make_user, make_project):
        manager = make_user(role="manager")
        project = make_project(manager)
        task = task_service.create_task(manager.id, project.id, {"title": "Color grade"})
        task_service.move_task(manager.id, task.id, "in_progress", 0)
        task_service.delete_task(manager.id, task.id)

        actions = [a.action for a in AuditLog.query.order_by(AuditLog.id)]
        assert actions == ["task.create", "task.move", "task.delete"]
        move = AuditLog.query.filter_by(action="task.move").one()
        assert move.project_id == project.id
        assert json.loads(move.details_json) == {"from": ["todo", 0], "to": ["in_progress", 0]}
