"""UserInfo endpoint, called with access tokens from the token endpoint."""

USERINFO_ENDPOINT = "/connect/userinfo"
ROCLIENT = ("roclient", "secret")


def access_token(request_token, scope: str) -> str:
    response = request_token(
        {"grant_type": "password", "username": "bob", "password": "bob", "scope": scope}, auth=ROCLIENT
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def test_userinfo_returns_claims_of_granted_identity_scopes(app_client, request_token):
    token = access_token(request_token, "openid email api1")

    response = app_client.get(USERINFO_ENDPOINT, headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json() == {"sub": "88421113", "email": "BobSmith@email.com", "email_verified": True}


def test_userinfo_accepts_post(app_client, request_token):
    token = access_token(request_token, "openid profile")

    response = app_client.post(USERINFO_ENDPOINT, headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    body = response.json()
    assert body["sub"] == "88421113"
    assert body["given_name"] == "Bob"
    assert "email" not in body


def test_userinfo_requires_openid_scope(app_client, request_token):
    token = access_token(request_token, "api1")

    response = app_client.get(USERINFO_ENDPOINT, headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 403
    assert response.json()["error"] == "insufficient_scope"


def test_userinfo_rejects_identity_token(app_client, request_token):
    response = request_token(
        {"grant_type": "password", "username": "bob", "password": "bob", "scope": "openid email"}, auth=ROCLIENT
    )
    identity_token = response.json()["identity_token"]

    response = app_client.get(USERINFO_ENDPOINT, headers={"Authorization": f"Bearer {identity_token}"})

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_token"


def test_userinfo_rejects_invalid_token(app_client):
    response = app_client.get(USERINFO_ENDPOINT, headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401
    assert response.json()["error"] == "invalid_token"
    assert "WWW-Authenticate" in response.headers


def test_userinfo_requires_a_token(app_client):
    response = app_client.get(USERINFO_ENDPOINT)
    assert response.status_code == 401
