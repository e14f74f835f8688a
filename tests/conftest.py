"""
Shared pytest fixtures for the Cutroom test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate, live registry reset (autouse)
    - client: Flask test client (function-scoped)
    - make_user / auth_headers / make_client_org / make_project / make_task / make_delivery
"""

import itertools

import pytest

from cutroom import create_app
from cutroom.models import db as _db
from cutroom.models.auth import User
from cutroom.models.delivery import DeliveryJob
from cutroom.models.project import Client, Project, ProjectMember
from cutroom.models.task import Task
from cutroom.services import task_board
from cutroom.services.delivery_review import next_version
from cutroom.services.jwt_service import generate_token_pair
from cutroom.services.live_channels import get_registry
from cutroom.utils.crypto import hash_password
from cutroom.utils.helpers import unit_of_work

PASSWORD = "secret123"

_seq = itertools.count(1)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        get_registry().reset()
        yield
        get_registry().reset()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    def _make(role="editor", name=None, email=None, is_active=True):
        n = next(_seq)
        user = User(
            name=name or f"User {n}",
            email=email or f"user{n}@example.com",
            password_hash=hash_password(PASSWORD, rounds=4),
            global_role=role,
            is_active=is_active,
        )
        _db.session.add(user)
        _db.session.commit()
        return user
    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user):
        tokens = generate_token_pair(user.id, user.global_role)
        return {"Authorization": f"Bearer {tokens['access_token']}"}
    return _headers


@pytest.fixture()
def make_client_org():
    def _make(email, name="Acme Films"):
        org = Client(name=name, email=email)
        _db.session.add(org)
        _db.session.commit()
        return org
    return _make


@pytest.fixture()
def make_project():
    """make_project(creator, members={user: role}, client=None, status="in_progress")"""
    def _make(creator, members=None, client=None, status="in_progress", name=None):
        project = Project(
            name=name or f"Project {next(_seq)}",
            status=status,
            created_by=creator.id,
            client_id=client.id if client else None,
        )
        _db.session.add(project)
        _db.session.flush()
        _db.session.add(ProjectMember(project_id=project.id, user_id=creator.id, role="manager"))
        for user, role in (members or {}).items():
            _db.session.add(ProjectMember(project_id=project.id, user_id=user.id, role=role))
        _db.session.commit()
        return project
    return _make


@pytest.fixture()
def make_task():
    """Append a task to a column through the board engine."""
    def _make(project, reporter, status="todo", title=None, assignee=None, parent=None):
        with unit_of_work():
            task = Task(
                project_id=project.id,
                title=title or f"Task {next(_seq)}",
                status=status,
                reporter_id=reporter.id,
                assignee_id=assignee.id if assignee else None,
                parent_task_id=parent.id if parent else None,
            )
            task_board.place(task)
        return task
    return _make


@pytest.fixture()
def make_delivery():
    def _make(project, uploader, status="uploaded", title=None, file_url="https://cdn.example.com/cut.mp4"):
        with unit_of_work():
            delivery = DeliveryJob(
                project_id=project.id,
                title=title or f"Cut {next(_seq)}",
                version=next_version(project.id),
                status=status,
                file_url=file_url if status != "pending" else None,
                uploaded_by=uploader.id,
            )
            _db.session.add(delivery)
        return delivery
    return _make


@pytest.fixture()
def password():
    """Plain-text password of every factory-made user."""
    return PASSWORD
