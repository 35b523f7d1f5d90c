"""Unit Tests for token auth - get_current_user, check_role

Run: pytest tests/governance/
"""
import pytest
from jose import jwt

from docvault import config
from docvault.errors import AuthenticationError, Forbidden
from docvault.governance.access import Identity, Role
from docvault.governance.auth import check_role, get_current_user, issue_token


def test_get_current_user_valid():
    token = issue_token("c1", "client")
    user = get_current_user(f"Bearer {token}")
    assert user == Identity(user_id="c1", role=Role.CLIENT)


def test_get_current_user_missing_header():
    with pytest.raises(AuthenticationError):
        get_current_user(None)


@pytest.mark.parametrize("header", [
    "Basic abc",
    "Bearer",
    "Bearer not.a.jwt",
])
def test_get_current_user_invalid(header):
    with pytest.raises(AuthenticationError) as exc:
        get_current_user(header)
    assert exc.value.status_code == 401


def test_get_current_user_wrong_secret():
    token = jwt.encode({"sub": "c1", "role": "admin"}, "other-secret", algorithm=config.JWT_ALGORITHM)
    with pytest.raises(AuthenticationError):
        get_current_user(f"Bearer {token}")


def test_get_current_user_unknown_role():
    token = jwt.encode({"sub": "c1", "role": "superuser"}, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)
    with pytest.raises(AuthenticationError):
        get_current_user(f"Bearer {token}")


@pytest.mark.asyncio
async def test_check_role_allowed():
    user = Identity(user_id="admin1", role=Role.ADMIN)
    checker = check_role("upload")
    assert await checker(user) == user


@pytest.mark.asyncio
async def test_check_role_denied():
    user = Identity(user_id="c1", role=Role.CLIENT)
    checker = check_role("delete")
    with pytest.raises(Forbidden) as exc:
        await checker(user)
    assert exc.value.status_code == 403


@pytest.mark.asyncio
async def test_check_role_unknown_endpoint_denies_everyone():
    checker = check_role("any_endpoint")
    with pytest.raises(Forbidden):
        await checker(Identity(user_id="admin1", role=Role.ADMIN))
