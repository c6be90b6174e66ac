from datetime import timedelta

import pytest

from app.core.security import (
    create_access_token,
    decode_token,
    generate_csrf_token,
    get_password_hash,
    load_oauth_state,
    sign_oauth_state,
    verify_csrf_token,
    verify_password,
)


def test_password_hash_and_verify():
    hashed = get_password_hash("Secret123")
    assert hashed != "Secret123"
    assert verify_password("Secret123", hashed)
    assert not verify_password("wrong", hashed)


def test_verify_password_with_broken_hash():
    assert verify_password("Secret123", "not-a-bcrypt-hash") is False


def test_access_token_round_trip():
    payload = decode_token(create_access_token({"sub": "42"}))
    assert payload["sub"] == "42"
    assert payload["type"] == "access"


def test_expired_token():
    token = create_access_token({"sub": "42"}, expires_delta=timedelta(seconds=-1))
    with pytest.raises(ValueError, match="Token expired"):
        decode_token(token)


def test_garbage_token():
    with pytest.raises(ValueError, match="Invalid token"):
        decode_token("not.a.token")


def test_csrf_double_submit():
    token = generate_csrf_token()
    assert verify_csrf_token(token, token)
    assert not verify_csrf_token(token, generate_csrf_token())
    assert not verify_csrf_token(token, None)
    assert not verify_csrf_token("forged", "forged")


def test_oauth_state():
    state = sign_oauth_state({"provider": "github", "redirect_uri": None})
    assert load_oauth_state(state) == {"provider": "github", "redirect_uri": None}
    assert load_oauth_state(state + "x") is None
