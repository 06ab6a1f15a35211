"""
Tests for the /auth and /users endpoints.
"""
from flowbit.features.organizations import service
from flowbit.features.users.resolver import OrganizationSelection
from flowbit.features.users import routes as user_routes

from conftest import auth_headers, register


def taken_code(client, token):
    return client.get("/organizations/current", headers=auth_headers(token)).json()["invite_code"]


class TestRegister:

    def test_register_creates_organization_and_owner_session(self, client):
        response = register(client, "owner@example.com", organization_name="Acme Corp")
        assert response.status_code == 201
        data = response.json()
        assert data["token"]
        assert data["role"] == "owner"
        assert data["permissions"] == ["*"]
        assert data["organization"]["slug"] == "acme-corp"
        assert data["user"]["email"] == "owner@example.com"
        assert data["require_organization_selection"] is False

    def test_register_with_invite_code_joins_as_member(self, client):
        owner = register(client, "owner@example.com", organization_name="Acme").json()
        code = client.get("/organizations/current", headers=auth_headers(owner["token"])).json()["invite_code"]

        response = register(client, "dev@example.com", invite_code=code.lower())
        assert response.status_code == 201
        data = response.json()
        assert data["role"] == "member"
        assert data["organization"]["id"] == owner["organization"]["id"]
        assert "tasks.edit" in data["permissions"]

    def test_register_needs_exactly_one_organization_source(self, client):
        assert register(client, "a@example.com").status_code == 400
        response = register(client, "b@example.com", organization_name="Acme", invite_code="ABC-1234")
        assert response.status_code == 400

    def test_duplicate_email(self, client):
        register(client, "owner@example.com", organization_name="Acme")
        response = register(client, "OWNER@example.com", organization_name="Other")
        assert response.status_code == 409

    def test_unknown_invite_code(self, client):
        response = register(client, "dev@example.com", invite_code="ZZZ-0000")
        assert response.status_code == 404

    def test_duplicate_organization_names_get_distinct_slugs(self, client):
        first = register(client, "a@example.com", organization_name="Acme").json()
        second = register(client, "b@example.com", organization_name="Acme").json()
        assert first["organization"]["slug"] == "acme"
        assert second["organization"]["slug"] == "acme-2"


class TestRegisterConflicts:

    def test_invite_code_collision_is_retried(self, client, monkeypatch):
        existing = taken_code(client, register(client, "first@example.com", organization_name="First").json()["token"])
        codes = [existing, "QQT-0001"]
        calls = []

        async def next_code(exists):
            calls.append(1)
            return codes.pop(0)

        monkeypatch.setattr(service, "generate_unique_invite_code", next_code)
        response = register(client, "second@example.com", organization_name="Second")

        assert response.status_code == 201
        assert len(calls) == 2
        assert taken_code(client, response.json()["token"]) == "QQT-0001"

    def test_repeated_collision_is_a_conflict(self, client, monkeypatch):
        existing = taken_code(client, register(client, "first@example.com", organization_name="First").json()["token"])

        async def same_code(exists):
            return existing

        monkeypatch.setattr(service, "generate_unique_invite_code", same_code)
        response = register(client, "second@example.com", organization_name="Second")

        assert response.status_code == 409
        assert response.json()["detail"] == "Registration conflicted with another request, please retry"
        # Neither attempt left a user behind
        login = client.post("/auth/login", json={"email": "second@example.com", "password": "password123"})
        assert login.status_code == 401


class TestLogin:

    def test_login_single_organization(self, client):
        register(client, "owner@example.com", organization_name="Acme")
        response = client.post("/auth/login", json={"email": "owner@example.com", "password": "password123"})
        assert response.status_code == 200
        data = response.json()
        assert data["token"]
        assert data["organization"]["slug"] == "acme"
        assert data["user"]["last_login_at"] is not None

    def test_wrong_password(self, client):
        register(client, "owner@example.com", organization_name="Acme")
        response = client.post("/auth/login", json={"email": "owner@example.com", "password": "nope-nope"})
        assert response.status_code == 401
        assert response.json() == {"message": "Invalid email or password"}

    def test_unknown_email(self, client):
        response = client.post("/auth/login", json={"email": "ghost@example.com", "password": "password123"})
        assert response.status_code == 401

    def test_several_organizations_require_selection(self, client):
        acme = register(client, "owner@example.com", organization_name="Acme").json()
        other = register(client, "other@example.com", organization_name="Other").json()
        code = client.get("/organizations/current", headers=auth_headers(other["token"])).json()["invite_code"]
        joined = client.post("/auth/join", json={
            "email": "owner@example.com", "password": "password123", "invite_code": code,
        })
        assert joined.status_code == 200
        assert joined.json()["organization"]["slug"] == "other"

        response = client.post("/auth/login", json={"email": "owner@example.com", "password": "password123"})
        data = response.json()
        assert response.status_code == 200
        assert data["require_organization_selection"] is True
        assert data["token"] is None
        assert [o["slug"] for o in data["organizations"]] == ["acme", "other"]

        response = client.post("/auth/login", json={
            "email": "owner@example.com", "password": "password123", "organization": "acme",
        })
        assert response.json()["organization"]["id"] == acme["organization"]["id"]

    def test_unaffiliated_organization(self, client):
        register(client, "owner@example.com", organization_name="Acme")
        register(client, "other@example.com", organization_name="Other")
        response = client.post("/auth/login", json={
            "email": "other@example.com", "password": "password123", "organization": "acme",
        })
        assert response.status_code == 403
        assert response.json() == {"message": "Access denied to this organization", "organization": "acme"}


class TestSessionEndpoints:

    def test_switch_organization(self, client):
        register(client, "owner@example.com", organization_name="Acme")
        other = register(client, "other@example.com", organization_name="Other").json()
        code = client.get("/organizations/current", headers=auth_headers(other["token"])).json()["invite_code"]
        token = client.post("/auth/join", json={
            "email": "owner@example.com", "password": "password123", "invite_code": code,
        }).json()["token"]

        response = client.post("/auth/switch", json={"organization": "acme"}, headers=auth_headers(token))
        assert response.status_code == 200
        assert response.json()["role"] == "owner"

        response = client.post("/auth/switch", json={"organization": "nowhere"}, headers=auth_headers(token))
        assert response.status_code == 403

    def test_missing_and_bad_tokens(self, client):
        assert client.get("/users/me").status_code == 401
        assert client.get("/users/me", headers=auth_headers("garbage")).status_code == 401

    def test_me_and_profile_update(self, client):
        token = register(client, "owner@example.com", organization_name="Acme").json()["token"]

        response = client.get("/users/me", headers=auth_headers(token))
        assert response.status_code == 200
        data = response.json()
        assert data["is_admin"] is True
        assert data["organization"]["slug"] == "acme"

        response = client.patch("/users/me", json={"first_name": "Ada"}, headers=auth_headers(token))
        assert response.status_code == 200
        assert response.json()["first_name"] == "Ada"

        organizations = client.get("/users/me/organizations", headers=auth_headers(token)).json()
        assert [o["slug"] for o in organizations] == ["acme"]

    def test_refresh_fails_cleanly_when_organization_is_not_resolved(self, client, monkeypatch):
        token = register(client, "owner@example.com", organization_name="Acme").json()["token"]

        async def ambiguous(db, user, organization):
            return OrganizationSelection(candidates=())

        monkeypatch.setattr(user_routes, "resolve_session", ambiguous)
        response = client.post("/auth/refresh", headers=auth_headers(token))
        assert response.status_code == 500
        assert response.json()["detail"] == "Organization could not be resolved"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}
