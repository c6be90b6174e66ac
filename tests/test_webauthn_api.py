async def _user_id(client) -> int:
    resp = await client.post(
        "/api/auth/register",
        json={"username": "alice", "email": "alice@example.com", "password": "Secret123"},
    )
    return resp.json()["user"]["id"]


FAKE_CREDENTIAL = {
    "id": "Y3JlZA",
    "rawId": "Y3JlZA",
    "type": "public-key",
    "response": {"clientDataJSON": "e30", "attestationObject": "oA"},
}


async def test_register_options(client):
    user_id = await _user_id(client)
    resp = await client.post(
        "/api/auth/webauthn/register-options",
        json={"userId": user_id, "username": "alice"},
    )
    assert resp.status_code == 200
    options = resp.json()
    assert options["rp"]["id"] == "localhost"
    assert options["user"]["name"] == "alice"
    assert options["user"]["displayName"] == "alice"
    assert options["challenge"]
    assert options["authenticatorSelection"]["authenticatorAttachment"] == "platform"
    assert options["authenticatorSelection"]["userVerification"] == "required"
    assert options.get("excludeCredentials", []) == []


async def test_register_options_unknown_user(client):
    resp = await client.post(
        "/api/auth/webauthn/register-options",
        json={"userId": 999, "username": "ghost"},
    )
    assert resp.status_code == 404


async def test_register_without_options_is_expired_session(client):
    user_id = await _user_id(client)
    resp = await client.post("/api/auth/webauthn/register", json={**FAKE_CREDENTIAL, "userId": user_id})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Registration session expired"


async def test_register_with_bad_attestation(client):
    user_id = await _user_id(client)
    await client.post("/api/auth/webauthn/register-options", json={"userId": user_id, "username": "alice"})
    resp = await client.post("/api/auth/webauthn/register", json={**FAKE_CREDENTIAL, "userId": user_id})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Verification failed"


async def test_login_options_issue_temp_id(client):
    resp = await client.post("/api/auth/webauthn/login-options")
    assert resp.status_code == 200
    options = resp.json()
    assert options["tempId"]
    assert options["challenge"]
    assert options.get("allowCredentials", []) == []
    assert options["userVerification"] == "required"


async def test_login_with_unknown_temp_id(client):
    resp = await client.post("/api/auth/webauthn/login", json={**FAKE_CREDENTIAL, "tempId": "nope"})
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Login session expired"


async def test_login_with_unknown_credential(client):
    temp_id = (await client.post("/api/auth/webauthn/login-options")).json()["tempId"]
    resp = await client.post("/api/auth/webauthn/login", json={**FAKE_CREDENTIAL, "tempId": temp_id})
    assert resp.status_code == 404


async def test_credentials_listing_and_delete(client):
    user_id = await _user_id(client)
    resp = await client.get(f"/api/auth/webauthn/credentials/{user_id}")
    assert resp.status_code == 200
    assert resp.json() == {"credentials": []}

    resp = await client.delete(f"/api/auth/webauthn/credentials/{user_id}/missing")
    assert resp.status_code == 404
