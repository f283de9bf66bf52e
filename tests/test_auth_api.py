import pytest
from fastapi import status

from conftest import PASSWORD

def test_login_success(client, users):
    """Test successful login with valid credentials."""
    employee = users["employee"]
    response = client.post("/api/auth/login", json={"email": employee.email, "password": PASSWORD})
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert "access_token" in data
    assert data["token_type"] == "bearer"
    assert data["user"]["emp_id"] == "EM001"
    assert data["user"]["role"] == "employee"

def test_login_invalid_credentials(client, users):
    """Test login failure with wrong password."""
    response = client.post("/api/auth/login", json={"email": users["employee"].email, "password": "wrong"})
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["errors"][0]["code"] == "AUTH_FAILED"

def test_login_inactive_user(client, db_session, users):
    users["employee"].is_active = False
    db_session.commit()
    response = client.post("/api/auth/login", json={"email": users["employee"].email, "password": PASSWORD})
    assert response.status_code == 400

def test_me_returns_profile(client, users, auth_headers):
    response = client.get("/api/auth/me", headers=auth_headers(users["employee"]))
    assert response.status_code == 200
    data = response.json()
    assert data["full_name"] == "Lina Test"
    assert data["reporting_manager_id"] == users["manager"].id

def test_me_requires_token(client, users):
    response = client.get("/api/auth/me")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

def test_login_validation_error_shape(client):
    response = client.post("/api/auth/login", json={"email": "not-an-email"})
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    fields = {e["field"] for e in body["errors"]}
    assert "password" in fields
