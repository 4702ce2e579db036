from types import SimpleNamespace

import pytest


@pytest.fixture
def acme_admin(register):
    return register("acme")


@pytest.fixture
def bolt_admin(register):
    return register("bolt")


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _as_role(user, role):
    return SimpleNamespace(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        role=role,
        tenant_id=user.tenant_id,
    )


def _create(client, token, name="Tower", **extra):
    return client.post("/api/projects", json={"name": name, **extra}, headers=_auth(token))


def test_create_project_uses_token_tenant(client, acme_admin, bolt_admin, token_for):
    response = _create(client, token_for(acme_admin), tenant_id=bolt_admin.tenant_id)

    assert response.status_code == 201
    body = response.json()
    assert body["tenant_id"] == acme_admin.tenant_id
    assert body["created_by"] == acme_admin.id
    assert body["status"] == "Planning"


def test_list_projects_only_shows_own_tenant(client, acme_admin, bolt_admin, token_for):
    _create(client, token_for(acme_admin), name="Tower")
    _create(client, token_for(bolt_admin), name="Bridge")

    response = client.get("/api/projects", headers=_auth(token_for(acme_admin)))

    assert response.status_code == 200
    body = response.json()
    assert [item["name"] for item in body["items"]] == ["Tower"]
    assert body["total_count"] == 1
    assert body["page_number"] == 1


def test_list_projects_requires_authentication(client):
    assert client.get("/api/projects").status_code == 401


def test_get_project_of_another_tenant_is_not_found(client, acme_admin, bolt_admin, token_for):
    bridge = _create(client, token_for(bolt_admin), name="Bridge").json()

    response = client.get(f"/api/projects/{bridge['id']}", headers=_auth(token_for(acme_admin)))

    assert response.status_code == 404
    assert response.json()["status_code"] == 404


def test_viewer_cannot_create_projects(client, acme_admin, token_for):
    viewer = token_for(_as_role(acme_admin, "Viewer"))

    response = _create(client, viewer)

    assert response.status_code == 403
    assert response.json()["message"] == "Access to this resource is forbidden."


def test_manager_can_create_but_not_delete(client, acme_admin, token_for):
    manager = token_for(_as_role(acme_admin, "Manager"))
    project = _create(client, manager).json()

    response = client.delete(f"/api/projects/{project['id']}", headers=_auth(manager))

    assert response.status_code == 403


def test_update_project(client, acme_admin, token_for):
    token = token_for(acme_admin)
    project = _create(client, token).json()

    response = client.put(
        f"/api/projects/{project['id']}",
        json={"status": "In Progress"},
        headers=_auth(token),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "In Progress"
    assert response.json()["name"] == "Tower"
    assert response.json()["updated_at"] is not None


def test_update_project_of_another_tenant_is_not_found(client, acme_admin, bolt_admin, token_for):
    bridge = _create(client, token_for(bolt_admin), name="Bridge").json()

    response = client.put(
        f"/api/projects/{bridge['id']}",
        json={"name": "Hijacked"},
        headers=_auth(token_for(acme_admin)),
    )

    assert response.status_code == 404
    fetched = client.get(f"/api/projects/{bridge['id']}", headers=_auth(token_for(bolt_admin)))
    assert fetched.json()["name"] == "Bridge"


def test_admin_deletes_own_project(client, acme_admin, token_for):
    token = token_for(acme_admin)
    project = _create(client, token).json()

    response = client.delete(f"/api/projects/{project['id']}", headers=_auth(token))

    assert response.status_code == 204
    assert client.get(f"/api/projects/{project['id']}", headers=_auth(token)).status_code == 404


def test_admin_cannot_delete_another_tenants_project(client, acme_admin, bolt_admin, token_for):
    bridge = _create(client, token_for(bolt_admin), name="Bridge").json()

    response = client.delete(f"/api/projects/{bridge['id']}", headers=_auth(token_for(acme_admin)))

    assert response.status_code == 404
    fetched = client.get(f"/api/projects/{bridge['id']}", headers=_auth(token_for(bolt_admin)))
    assert fetched.status_code == 200


def test_admin_endpoint_is_role_gated(client, acme_admin, token_for):
    admin = client.get("/api/projects/admin", headers=_auth(token_for(acme_admin)))
    worker = client.get("/api/projects/admin", headers=_auth(token_for(_as_role(acme_admin, "Worker"))))

    assert admin.status_code == 200
    assert admin.json()["user"]["tenant_id"] == acme_admin.tenant_id
    assert worker.status_code == 403
