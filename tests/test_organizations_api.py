"""
Tests for organization, membership and invitation routes.
"""
import pytest

from conftest import auth_headers, register


@pytest.fixture
def acme(client):
    owner = register(client, "owner@example.com", organization_name="Acme").json()
    headers = auth_headers(owner["token"])
    code = client.get("/organizations/current", headers=headers).json()["invite_code"]
    member = register(client, "dev@example.com", invite_code=code).json()
    return {
        "owner": headers,
        "owner_id": owner["user"]["id"],
        "member": auth_headers(member["token"]),
        "member_id": member["user"]["id"],
        "code": code,
    }


def login(client, email, organization=None):
    body = {"email": email, "password": "password123"}
    if organization:
        body["organization"] = organization
    return client.post("/auth/login", json=body)


def set_status(client, headers, user_id, status):
    return client.put(f"/organizations/members/{user_id}/status", headers=headers, json={"status": status})


class TestCurrentOrganization:

    def test_invite_code_only_visible_to_admins(self, client, acme):
        owner_view = client.get("/organizations/current", headers=acme["owner"]).json()
        member_view = client.get("/organizations/current", headers=acme["member"]).json()
        assert owner_view["invite_code"] == acme["code"]
        assert member_view["invite_code"] is None
        assert owner_view["member_count"] == 2
        assert owner_view["plan"] == "free"
        assert owner_view["max_users"] == 5

    def test_update_requires_org_edit(self, client, acme):
        response = client.patch("/organizations/current", headers=acme["member"], json={"name": "Hacked"})
        assert response.status_code == 403

        response = client.patch("/organizations/current", headers=acme["owner"], json={"name": "Acme Inc"})
        assert response.status_code == 200
        assert response.json()["name"] == "Acme Inc"

    def test_regenerate_invite_code(self, client, acme):
        response = client.post("/organizations/current/invite-code", headers=acme["owner"])
        assert response.status_code == 200
        new_code = response.json()["invite_code"]
        assert new_code != acme["code"]

        assert register(client, "late@example.com", invite_code=acme["code"]).status_code == 404
        assert register(client, "late@example.com", invite_code=new_code).status_code == 201

    def test_disabled_invite_code(self, client, acme):
        client.patch("/organizations/current", headers=acme["owner"], json={"invite_code_enabled": False})
        assert register(client, "late@example.com", invite_code=acme["code"]).status_code == 404

    def test_user_limit(self, client, acme):
        for i in range(3):
            assert register(client, f"user{i}@example.com", invite_code=acme["code"]).status_code == 201
        response = register(client, "sixth@example.com", invite_code=acme["code"])
        assert response.status_code == 403
        assert "user limit" in response.json()["detail"]


class TestMembers:

    def test_list_members(self, client, acme):
        members = client.get("/organizations/members", headers=acme["owner"]).json()
        assert [(m["email"], m["role_name"]) for m in members] == [
            ("dev@example.com", "member"),
            ("owner@example.com", "owner"),
        ]

    def test_member_without_view_permission(self, client, acme):
        assert client.get("/organizations/members", headers=acme["member"]).status_code == 403

    def test_cannot_change_own_role(self, client, acme):
        member_role = next(
            r for r in client.get("/permissions/roles", headers=acme["owner"]).json() if r["name"] == "member"
        )
        response = client.put(f"/organizations/members/{acme['owner_id']}/role", headers=acme["owner"],
                              json={"role_id": member_role["id"]})
        assert response.status_code == 400

    def test_members_of_other_organizations_are_invisible(self, client, acme):
        other = register(client, "other@example.com", organization_name="Other").json()
        headers = auth_headers(other["token"])
        own_role = next(r for r in client.get("/permissions/roles", headers=headers).json() if r["name"] == "member")

        response = client.put(f"/organizations/members/{acme['member_id']}/role", headers=headers,
                              json={"role_id": own_role["id"]})
        assert response.status_code == 404
        assert set_status(client, headers, acme["member_id"], "suspended").status_code == 404
        assert client.delete(f"/organizations/members/{acme['member_id']}", headers=headers).status_code == 404

    def test_suspended_member_cannot_log_in(self, client, acme):
        response = set_status(client, acme["owner"], acme["member_id"], "suspended")
        assert response.status_code == 200

        response = login(client, "dev@example.com")
        assert response.status_code == 403
        assert response.json()["message"] == "Cannot authenticate into any organization"

        assert set_status(client, acme["owner"], acme["member_id"], "active").status_code == 200
        assert login(client, "dev@example.com").status_code == 200

    def test_left_is_terminal(self, client, acme):
        assert set_status(client, acme["owner"], acme["member_id"], "left").status_code == 200
        response = set_status(client, acme["owner"], acme["member_id"], "active")
        assert response.status_code == 400

    def test_left_member_rejoins_with_invite_code(self, client, acme):
        set_status(client, acme["owner"], acme["member_id"], "left")
        response = client.post("/auth/join", json={
            "email": "dev@example.com", "password": "password123", "invite_code": acme["code"],
        })
        assert response.status_code == 200
        assert response.json()["role"] == "member"

    def test_active_member_cannot_rejoin(self, client, acme):
        response = client.post("/auth/join", json={
            "email": "dev@example.com", "password": "password123", "invite_code": acme["code"],
        })
        assert response.status_code == 409

    def test_remove_member(self, client, acme):
        response = client.delete(f"/organizations/members/{acme['member_id']}", headers=acme["owner"])
        assert response.status_code == 204
        assert login(client, "dev@example.com").status_code == 403
        assert client.delete(f"/organizations/members/{acme['owner_id']}", headers=acme["owner"]).status_code == 400

    def test_member_management_requires_admin(self, client, acme):
        response = set_status(client, acme["member"], acme["owner_id"], "suspended")
        assert response.status_code == 403
        assert response.json()["message"] == "Organization admin access required"


class TestInvitations:

    def test_invite_and_activate(self, client, acme):
        register(client, "other@example.com", organization_name="Other")

        response = client.post("/organizations/invitations", headers=acme["owner"],
                               json={"email": "other@example.com"})
        assert response.status_code == 201
        invitation = response.json()
        assert invitation["status"] == "pending"
        assert invitation["invited_by_id"] == acme["owner_id"]

        pending = client.get("/organizations/invitations", headers=acme["owner"]).json()
        assert [i["email"] for i in pending] == ["other@example.com"]

        # A pending membership does not count for login
        assert login(client, "other@example.com").json()["organization"]["slug"] == "other"

        assert set_status(client, acme["owner"], invitation["user_id"], "active").status_code == 200
        assert login(client, "other@example.com").json()["require_organization_selection"] is True

    def test_invite_conflicts(self, client, acme):
        response = client.post("/organizations/invitations", headers=acme["owner"],
                               json={"email": "dev@example.com"})
        assert response.status_code == 409

        response = client.post("/organizations/invitations", headers=acme["owner"],
                               json={"email": "nobody@example.com"})
        assert response.status_code == 404

    def test_cancel_invitation(self, client, acme):
        register(client, "other@example.com", organization_name="Other")
        invitation = client.post("/organizations/invitations", headers=acme["owner"],
                                 json={"email": "other@example.com"}).json()

        response = client.delete(f"/organizations/invitations/{invitation['membership_id']}", headers=acme["owner"])
        assert response.status_code == 204
        assert client.get("/organizations/invitations", headers=acme["owner"]).json() == []

    def test_member_cannot_invite(self, client, acme):
        response = client.post("/organizations/invitations", headers=acme["member"],
                               json={"email": "owner@example.com"})
        assert response.status_code == 403
