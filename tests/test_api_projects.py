"""
Project, member and client endpoint tests.
"""

from cutroom.models import db
from cutroom.models.notification import Notification
from cutroom.models.project import Client, Project
from cutroom.models.task import Task


# ═══════════════════════════════════════════════════════════════
# Projects
# ═══════════════════════════════════════════════════════════════

class TestProjects:
    def test_manager_creates_project_and_becomes_member(self, client, make_user, auth_headers):
        manager = make_user(role="manager")
        res = client.post(
            "/api/v1/projects",
            json={"name": "Spring Campaign", "deadline": "2026-12-01", "budget": "12000.50"},
            headers=auth_headers(manager),
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["name"] == "Spring Campaign"
        assert body["status"] == "draft"
        assert body["budget"] == 12000.5
        assert [(m["user_id"], m["project_role"]) for m in body["members"]] == [(manager.id, "manager")]

    def test_editor_cannot_create_project(self, client, make_user, auth_headers):
        editor = make_user()
        res = client.post("/api/v1/projects", json={"name": "Nope"}, headers=auth_headers(editor))
        assert res.status_code == 403
        assert res.get_json()["details"]["action"] == "create_project"

    def test_name_required(self, client, make_user, auth_headers):
        manager = make_user(role="manager")
        res = client.post("/api/v1/projects", json={"name": " "}, headers=auth_headers(manager))
        assert res.status_code == 400

    def test_list_shows_only_visible_projects(
        self, client, make_user, make_project, make_client_org, auth_headers,
    ):
        manager = make_user(role="manager")
        editor = make_user()
        client_user = make_user(role="client", email="buyer@brand.test")
        org = make_client_org("buyer@brand.test")
        mine = make_project(manager, members={editor: "editor"})
        theirs = make_project(manager, client=org)
        make_project(manager, status="archived")

        def ids(user):
            res = client.get("/api/v1/projects", headers=auth_headers(user))
            return {p["id"] for p in res.get_json()["items"]}

        assert ids(editor) == {mine.id}
        assert ids(client_user) == {theirs.id}
        assert ids(manager) == {mine.id, theirs.id}

        archived = client.get("/api/v1/projects?include_archived=1", headers=auth_headers(manager)).get_json()
        assert archived["total"] == 3

    def test_search(self, client, make_user, make_project, auth_headers):
        manager = make_user(role="manager")
        make_project(manager, name="Wedding Film")
        make_project(manager, name="Product Launch")
        res = client.get("/api/v1/projects?q=wedding", headers=auth_headers(manager))
        assert [p["name"] for p in res.get_json()["items"]] == ["Wedding Film"]

    def test_non_member_cannot_view(self, client, make_user, make_project, auth_headers):
        manager, outsider = make_user(role="manager"), make_user()
        project = make_project(manager)
        assert client.get(f"/api/v1/projects/{project.id}", headers=auth_headers(outsider)).status_code == 403
        assert client.get("/api/v1/projects/99999", headers=auth_headers(outsider)).status_code == 404

    def test_update_and_archive(self, client, make_user, make_project, auth_headers):
        manager, editor = make_user(role="manager"), make_user()
        project = make_project(manager, members={editor: "editor"})

        denied = client.put(f"/api/v1/projects/{project.id}", json={"name": "X"}, headers=auth_headers(editor))
        assert denied.status_code == 403

        res = client.put(f"/api/v1/projects/{project.id}", json={"status": "review"}, headers=auth_headers(manager))
        assert res.get_json()["status"] == "review"

        bad = client.put(f"/api/v1/projects/{project.id}", json={"status": "lost"}, headers=auth_headers(manager))
        assert bad.status_code == 400

        res = client.post(f"/api/v1/projects/{project.id}/archive", headers=auth_headers(manager))
        assert res.get_json()["status"] == "archived"

    def test_hard_delete_is_admin_only_and_cascades(
        self, client, make_user, make_project, make_task, auth_headers,
    ):
        admin, manager = make_user(role="admin"), make_user(role="manager")
        project = make_project(manager)
        make_task(project, manager)

        assert client.delete(f"/api/v1/projects/{project.id}", headers=auth_headers(manager)).status_code == 403
        assert client.delete(f"/api/v1/projects/{project.id}", headers=auth_headers(admin)).status_code == 200
        assert db.session.get(Project, project.id) is None
        assert Task.query.count() == 0

    def test_stats(self, client, make_user, make_project, make_task, make_delivery, auth_headers):
        manager = make_user(role="manager")
        project = make_project(manager)
        make_task(project, manager)
        make_task(project, manager, status="done")
        make_delivery(project, manager, status="in_review")

        body = client.get(f"/api/v1/projects/{project.id}/stats", headers=auth_headers(manager)).get_json()
        assert body["tasks"]["total"] == 2
        assert body["tasks"]["by_status"]["done"] == 1
        assert body["tasks"]["completion_pct"] == 50.0
        assert body["deliveries"]["by_status"]["in_review"] == 1
        assert body["member_count"] == 1


# ═══════════════════════════════════════════════════════════════
# Members
# ═══════════════════════════════════════════════════════════════

class TestMembers:
    def test_add_by_email_notifies_once(self, client, make_user, make_project, auth_headers):
        manager = make_user(role="manager")
        editor = make_user(email="cutter@example.com")
        project = make_project(manager)
        url = f"/api/v1/projects/{project.id}/members"

        res = client.post(url, json={"email": "CUTTER@example.com", "role": "editor"}, headers=auth_headers(manager))
        assert res.status_code == 201
        assert res.get_json()["project_role"] == "editor"

        res = client.post(url, json={"user_id": editor.id, "role": "freelancer"}, headers=auth_headers(manager))
        assert res.status_code == 200
        assert res.get_json()["project_role"] == "freelancer"

        invites = Notification.query.filter_by(user_id=editor.id, type="project_invite").all()
        assert len(invites) == 1
        members = client.get(url, headers=auth_headers(manager)).get_json()
        assert members["total"] == 2

    def test_add_validation(self, client, make_user, make_project, auth_headers):
        manager = make_user(role="manager")
        project = make_project(manager)
        url = f"/api/v1/projects/{project.id}/members"
        headers = auth_headers(manager)

        assert client.post(url, json={}, headers=headers).status_code == 400
        assert client.post(url, json={"email": "ghost@example.com"}, headers=headers).status_code == 404
        other = make_user()
        assert client.post(url, json={"user_id": other.id, "role": "owner"}, headers=headers).status_code == 400
        demote = client.post(url, json={"user_id": manager.id, "role": "editor"}, headers=headers)
        assert demote.status_code == 400

    def test_only_managers_manage_members(self, client, make_user, make_project, auth_headers):
        manager, editor, other = make_user(role="manager"), make_user(), make_user()
        project = make_project(manager, members={editor: "editor"})
        res = client.post(
            f"/api/v1/projects/{project.id}/members", json={"user_id": other.id}, headers=auth_headers(editor),
        )
        assert res.status_code == 403

    def test_remove_member(self, client, make_user, make_project, auth_headers):
        manager, editor = make_user(role="manager"), make_user()
        project = make_project(manager, members={editor: "editor"})
        base = f"/api/v1/projects/{project.id}/members"

        assert client.delete(f"{base}/{manager.id}", headers=auth_headers(manager)).status_code == 400
        assert client.delete(f"{base}/{editor.id}", headers=auth_headers(manager)).status_code == 200
        assert client.delete(f"{base}/{editor.id}", headers=auth_headers(manager)).status_code == 404
        assert client.get(f"/api/v1/projects/{project.id}", headers=auth_headers(editor)).status_code == 403


# ═══════════════════════════════════════════════════════════════
# Clients
# ═══════════════════════════════════════════════════════════════

class TestClients:
    def test_crud(self, client, make_user, make_project, auth_headers):
        admin, manager = make_user(role="admin"), make_user(role="manager")
        headers = auth_headers(manager)

        res = client.post("/api/v1/clients", json={"name": "Globex", "email": "Ops@Globex.example.com"}, headers=headers)
        assert res.status_code == 201
        client_id = res.get_json()["id"]
        assert res.get_json()["email"] == "ops@globex.example.com"

        res = client.put(f"/api/v1/clients/{client_id}", json={"company": "Globex Corp"}, headers=headers)
        assert res.get_json()["company"] == "Globex Corp"

        listed = client.get("/api/v1/clients?search=globex", headers=headers).get_json()
        assert listed["total"] == 1

        project = make_project(manager, client=db.session.get(Client, client_id))
        assert client.delete(f"/api/v1/clients/{client_id}", headers=headers).status_code == 403
        res = client.delete(f"/api/v1/clients/{client_id}", headers=auth_headers(admin))
        assert res.status_code == 200
        assert db.session.get(Project, project.id).client_id is None

    def test_editor_cannot_manage_clients(self, client, make_user, auth_headers):
        editor = make_user()
        assert client.get("/api/v1/clients", headers=auth_headers(editor)).status_code == 403
        assert client.post("/api/v1/clients", json={"name": "X"}, headers=auth_headers(editor)).status_code == 403

    def test_invalid_email(self, client, make_user, auth_headers):
        manager = make_user(role="manager")
        res = client.post("/api/v1/clients", json={"name": "X", "email": "nope"}, headers=auth_headers(manager))
        assert res.status_code == 400
