# tests/test_auth.py
from datetime import datetime, timedelta, timezone
import pytest
from httpx import AsyncClient
from api.auth import (
    authenticate,
    make_token,
    require_admin,
    require_owner,
)
from store.errors import Forbidden, Unauthenticated
from store.models import RequestContext
from store.utils import hash_password, verify_password


def _context(user_id="alice", is_admin=False):
    return RequestContext(
        user_id=user_id, is_admin=is_admin, issued_at=datetime.now(timezone.utc)
    )


def test_authenticate_decodes_issued_token():
    """
    Test that a freshly issued credential decodes to the same identity.

    Asserts:
        - user_id and is_admin survive the round trip
        - issued_at is within a few seconds of now
    """
    ctx = authenticate(make_token("user-42", True))
    assert ctx.user_id == "user-42"
    assert ctx.is_admin is True
    assert abs(datetime.now(timezone.utc) - ctx.issued_at) < timedelta(seconds=5)


@pytest.mark.parametrize("credential", [None, "", "garbage", "a|b|c", "a|1|x|sig"])
def test_authenticate_rejects_malformed(credential):
    with pytest.raises(Unauthenticated):
        authenticate(credential)


def test_authenticate_rejects_tampered_admin_flag():
    token = make_token("alice", False)
    user_id, _, issued, signature = token.split("|")
    forged = f"{user_id}|1|{issued}|{signature}"
    with pytest.raises(Unauthenticated):
        authenticate(forged)


def test_authenticate_rejects_expired_token():
    issued = datetime.now(timezone.utc) - timedelta(days=8)
    with pytest.raises(Unauthenticated) as exc:
        authenticate(make_token("alice", False, issued_at=issued))
    assert "expired" in exc.value.message


def test_authenticate_accepts_token_inside_window():
    issued = datetime.now(timezone.utc) - timedelta(days=6)
    assert authenticate(make_token("alice", False, issued_at=issued)).user_id == "alice"


def test_require_admin():
    assert require_admin(_context(is_admin=True)).is_admin
    with pytest.raises(Forbidden):
        require_admin(_context(is_admin=False))


def test_require_owner():
    assert require_owner(_context("alice"), "alice").user_id == "alice"
    with pytest.raises(Forbidden):
        require_owner(_context("alice"), "bob")


def test_password_hash_is_salted_and_verifiable():
    first = hash_password("hunter22", iterations=1000)
    second = hash_password("hunter22", iterations=1000)
    assert first != second
    assert verify_password("hunter22", first)
    assert not verify_password("hunter23", first)
    assert not verify_password("hunter22", "")


@pytest.mark.asyncio
async def test_missing_bearer_header_is_401(client: AsyncClient):
    r = await client.post(
        "/reviews", json={"bookId": "book1", "rating": 4, "comment": "Good read overall."}
    )
    assert r.status_code == 401
    assert r.json()["message"]


@pytest.mark.asyncio
async def test_invalid_bearer_token_is_401(client: AsyncClient):
    r = await client.get("/users/me", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401
    assert r.json() == {"message": "Token is not valid"}


@pytest.mark.asyncio
async def test_wrong_auth_scheme_is_401(client: AsyncClient, tokens):
    r = await client.get("/users/me", headers={"Authorization": f"Basic {tokens['alice']}"})
    assert r.status_code == 401
