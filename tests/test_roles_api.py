"""
Tests for role management, permission inspection and audit log routes.
"""
import pytest

from conftest import auth_headers, register


@pytest.fixture
def acme(client):
    """An organization with an owner and one invited member; returns both tokens."""
    owner = register(client, "owner@example.com", organization_name="Acme").json()
    code = client.get("/organizations/current", headers=auth_headers(owner["token"])).json()["invite_code"]
    member = register(client, "dev@example.com", invite_code=code).json()
    return {
        "owner": auth_headers(owner["token"]),
        "member": auth_headers(member["token"]),
        "member_id": member["user"]["id"],
        "organization_id": owner["organization"]["id"],
    }


def create_role(client, headers, name="qa", permissions=("tasks.*", "projects.view")):
    return client.post("/permissions/roles", headers=headers, json={
        "name": name,
        "display_name": name.upper(),
        "permissions": list(permissions),
    })


def role_by_name(client, headers, name):
    return next(r for r in client.get("/permissions/roles", headers=headers).json() if r["name"] == name)


class TestRoleCrud:

    def test_list_includes_system_roles_with_counts(self, client, acme):
        roles = {r["name"]: r for r in client.get("/permissions/roles", headers=acme["owner"]).json()}
        assert roles["owner"]["is_system"] is True
        assert roles["owner"]["permissions"] == ["*"]
        assert roles["owner"]["member_count"] == 1
        assert roles["member"]["member_count"] == 1

    def test_create_role(self, client, acme):
        response = create_role(client, acme["owner"], permissions=["tasks.view", "tasks.*", "tasks.view"])
        assert response.status_code == 201
        data = response.json()
        assert data["permissions"] == ["tasks.*", "tasks.view"]
        assert data["is_system"] is False
        assert data["organization_id"] == acme["organization_id"]
        assert data["member_count"] == 0

    def test_member_cannot_create_role(self, client, acme):
        response = create_role(client, acme["member"])
        assert response.status_code == 403
        assert response.json() == {"message": "Insufficient permissions", "required": ["roles.create"]}

    def test_duplicate_and_reserved_names(self, client, acme):
        assert create_role(client, acme["owner"]).status_code == 201
        assert create_role(client, acme["owner"]).status_code == 409
        assert create_role(client, acme["owner"], name="owner").status_code == 409

    def test_unknown_permission_is_rejected(self, client, acme):
        response = create_role(client, acme["owner"], permissions=["spaceships.launch"])
        assert response.status_code == 400

    def test_system_roles_are_immutable(self, client, acme):
        owner_role = role_by_name(client, acme["owner"], "owner")
        response = client.put(f"/permissions/roles/{owner_role['id']}", headers=acme["owner"],
                              json={"permissions": ["tasks.view"]})
        assert response.status_code == 400
        response = client.delete(f"/permissions/roles/{owner_role['id']}", headers=acme["owner"])
        assert response.status_code == 400

    def test_update_and_delete_custom_role(self, client, acme):
        role = create_role(client, acme["owner"]).json()
        response = client.put(f"/permissions/roles/{role['id']}", headers=acme["owner"],
                              json={"permissions": ["crm.*"], "description": "Quality"})
        assert response.status_code == 200
        assert response.json()["permissions"] == ["crm.*"]
        assert response.json()["description"] == "Quality"

        response = client.delete(f"/permissions/roles/{role['id']}", headers=acme["owner"])
        assert response.status_code == 204
        assert client.get(f"/permissions/roles/{role['id']}", headers=acme["owner"]).status_code == 404

    def test_assigned_role_cannot_be_deleted(self, client, acme):
        role = create_role(client, acme["owner"]).json()
        client.put(f"/organizations/members/{acme['member_id']}/role", headers=acme["owner"],
                   json={"role_id": role["id"]})
        response = client.delete(f"/permissions/roles/{role['id']}", headers=acme["owner"])
        assert response.status_code == 400

    def test_default_role_cannot_be_deleted(self, client, acme):
        role = create_role(client, acme["owner"], name="guest", permissions=["projects.view"]).json()
        response = client.patch("/organizations/current", headers=acme["owner"],
                                json={"default_role_id": role["id"]})
        assert response.status_code == 200

        response = client.delete(f"/permissions/roles/{role['id']}", headers=acme["owner"])
        assert response.status_code == 400
        assert response.json()["detail"] == "Cannot delete the organization's default role"

        code = client.get("/organizations/current", headers=acme["owner"]).json()["invite_code"]
        joined = register(client, "new@example.com", invite_code=code)
        assert joined.status_code == 201
        assert joined.json()["role"] == "guest"

    def test_role_held_only_by_departed_members_can_be_deleted(self, client, acme):
        role = create_role(client, acme["owner"]).json()
        client.put(f"/organizations/members/{acme['member_id']}/role", headers=acme["owner"],
                   json={"role_id": role["id"]})
        response = client.put(f"/organizations/members/{acme['member_id']}/status", headers=acme["owner"],
                              json={"status": "left"})
        assert response.status_code == 200
        assert role_by_name(client, acme["owner"], "qa")["member_count"] == 0

        response = client.delete(f"/permissions/roles/{role['id']}", headers=acme["owner"])
        assert response.status_code == 204

        code = client.get("/organizations/current", headers=acme["owner"]).json()["invite_code"]
        rejoined = client.post("/auth/join", json={
            "email": "dev@example.com", "password": "password123", "invite_code": code,
        })
        assert rejoined.status_code == 200
        assert rejoined.json()["role"] == "member"

    def test_roles_of_other_organizations_are_invisible(self, client, acme):
        role = create_role(client, acme["owner"]).json()
        other = auth_headers(register(client, "other@example.com", organization_name="Other").json()["token"])

        assert client.get(f"/permissions/roles/{role['id']}", headers=other).status_code == 404
        assert client.delete(f"/permissions/roles/{role['id']}", headers=other).status_code == 404
        assert "qa" not in {r["name"] for r in client.get("/permissions/roles", headers=other).json()}


class TestSessionPermissions:

    def test_me(self, client, acme):
        data = client.get("/permissions/me", headers=acme["member"]).json()
        assert data["role"] == "member"
        assert data["is_admin"] is False
        assert "projects.view" in data["permissions"]

    def test_check(self, client, acme):
        response = client.post("/permissions/check", headers=acme["member"], json={
            "permissions": ["tasks.edit", "org.delete"], "mode": "any",
        })
        assert response.json() == {"allowed": True, "results": {"tasks.edit": True, "org.delete": False}}

        response = client.post("/permissions/check", headers=acme["member"], json={
            "permissions": ["tasks.edit", "org.delete"],
        })
        assert response.json()["allowed"] is False

    def test_role_change_applies_after_refresh(self, client, acme):
        role = create_role(client, acme["owner"], permissions=["crm.*"]).json()
        response = client.put(f"/organizations/members/{acme['member_id']}/role", headers=acme["owner"],
                              json={"role_id": role["id"]})
        assert response.status_code == 200

        # Existing token keeps its snapshot
        assert client.get("/permissions/me", headers=acme["member"]).json()["role"] == "member"

        refreshed = client.post("/auth/refresh", headers=acme["member"]).json()
        assert refreshed["role"] == "qa"
        assert refreshed["permissions"] == ["crm.*"]


class TestAuditLogs:

    def test_changes_are_audited(self, client, acme):
        role = create_role(client, acme["owner"]).json()

        response = client.get("/permissions/audit-logs", headers=acme["owner"])
        assert response.status_code == 200
        data = response.json()
        assert data["total"] >= 1
        entry = next(e for e in data["items"] if e["resource_type"] == "role")
        assert entry["action"] == "create"
        assert entry["resource_id"] == role["id"]

    def test_filter_and_pagination(self, client, acme):
        create_role(client, acme["owner"], name="qa")
        create_role(client, acme["owner"], name="ops")
        data = client.get("/permissions/audit-logs?resource_type=role&page_size=1",
                          headers=acme["owner"]).json()
        assert data["total"] == 2
        assert data["pages"] == 2
        assert len(data["items"]) == 1

    def test_requires_audit_permission(self, client, acme):
        assert client.get("/permissions/audit-logs", headers=acme["member"]).status_code == 403
