"""Test project and membership routes."""

import pytest


@pytest.fixture
def project(client, make_user):
    """A project created through the API; returns (project_id, creator headers)."""
    _, headers = make_user(user_id="usr_creator")
    response = client.post(
        "/projects",
        json={"name": "Woontoren Noord", "description": "120 units"},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()["id"], headers


class TestProjects:
    def test_create_registers_creator(self, client, project, fake_db):
        project_id, headers = project
        members = fake_db.rows("project_members")
        assert len(members) == 1
        assert members[0]["role"] == "creator"
        assert members[0]["permissions"]["can_delete"] is True

        detail = client.get(f"/projects/{project_id}", headers=headers).json()
        assert detail["name"] == "Woontoren Noord"
        assert detail["org_id"] == "org_1"
        assert detail["role"] == "creator"

    def test_list_only_member_projects(self, client, project, make_user):
        _, creator_headers = project
        _, other_headers = make_user(user_id="usr_other")

        assert len(client.get("/projects", headers=creator_headers).json()["projects"]) == 1
        assert client.get("/projects", headers=other_headers).json() == {"projects": []}

    def test_non_member_forbidden(self, client, project, make_user):
        project_id, _ = project
        _, headers = make_user(user_id="usr_other")
        assert client.get(f"/projects/{project_id}", headers=headers).status_code == 403

    def test_missing_project(self, client, make_user):
        _, headers = make_user()
        assert client.get("/projects/nope", headers=headers).status_code == 404

    def test_deleted_project_hidden(self, client, project, fake_db):
        project_id, headers = project
        fake_db.rows("project_projects")[0]["deleted_at"] = "2025-01-01T00:00:00+00:00"
        assert client.get(f"/projects/{project_id}", headers=headers).status_code == 404
        assert client.get("/projects", headers=headers).json() == {"projects": []}


class TestMembers:
    def test_add_and_list(self, client, project, make_user):
        project_id, headers = project
        make_user(user_id="usr_colleague", name="Colleague")

        response = client.post(
            f"/projects/{project_id}/members",
            json={"user_id": "usr_colleague", "role": "viewer"},
            headers=headers,
        )
        assert response.status_code == 201
        assert response.json()["permissions"]["can_edit"] is False
        assert response.json()["invited_by_user_id"] == "usr_creator"

        members = client.get(f"/projects/{project_id}/members", headers=headers).json()["members"]
        assert {m["user_id"] for m in members} == {"usr_creator", "usr_colleague"}
        assert any(m["user_name"] == "Colleague" for m in members)

    def test_add_rejections(self, client, project, make_user):
        project_id, headers = project
        make_user(user_id="usr_outsider", org_id="org_2")

        url = f"/projects/{project_id}/members"
        assert client.post(url, json={"user_id": "usr_ghost"}, headers=headers).status_code == 404
        assert client.post(url, json={"user_id": "usr_outsider"}, headers=headers).status_code == 400
        assert client.post(url, json={"user_id": "usr_creator"}, headers=headers).status_code == 400

    def test_member_cannot_manage(self, client, project, make_user):
        project_id, headers = project
        _, member_headers = make_user(user_id="usr_member")
        make_user(user_id="usr_third")
        client.post(f"/projects/{project_id}/members", json={"user_id": "usr_member"}, headers=headers)

        response = client.post(
            f"/projects/{project_id}/members",
            json={"user_id": "usr_third"},
            headers=member_headers,
        )
        assert response.status_code == 403

    def test_role_change_resets_permissions(self, client, project, make_user):
        project_id, headers = project
        make_user(user_id="usr_member")
        client.post(f"/projects/{project_id}/members", json={"user_id": "usr_member"}, headers=headers)

        response = client.patch(
            f"/projects/{project_id}/members/usr_member",
            json={"role": "admin"},
            headers=headers,
        )
        assert response.status_code == 200
        assert response.json()["role"] == "admin"
        assert response.json()["permissions"]["can_manage_members"] is True

    def test_last_creator_protected(self, client, project):
        project_id, headers = project
        response = client.patch(
            f"/projects/{project_id}/members/usr_creator",
            json={"role": "member"},
            headers=headers,
        )
        assert response.status_code == 400
        response = client.delete(f"/projects/{project_id}/members/usr_creator", headers=headers)
        assert response.status_code == 400

    def test_member_may_leave(self, client, project, make_user, fake_db):
        project_id, headers = project
        _, member_headers = make_user(user_id="usr_member")
        client.post(f"/projects/{project_id}/members", json={"user_id": "usr_member"}, headers=headers)

        response = client.delete(f"/projects/{project_id}/members/usr_member", headers=member_headers)
        assert response.json() == {"status": "removed"}
        left = [m for m in fake_db.rows("project_members") if m["user_id"] == "usr_member"][0]
        assert left["left_at"] is not None
        assert client.get(f"/projects/{project_id}", headers=member_headers).status_code == 403

    def test_member_cannot_remove_others(self, client, project, make_user):
        project_id, headers = project
        _, member_headers = make_user(user_id="usr_member")
        client.post(f"/projects/{project_id}/members", json={"user_id": "usr_member"}, headers=headers)

        response = client.delete(f"/projects/{project_id}/members/usr_creator", headers=member_headers)
        assert response.status_code == 403

    def test_remove_unknown_member(self, client, project):
        project_id, headers = project
        assert client.delete(f"/projects/{project_id}/members/usr_ghost", headers=headers).status_code == 404
