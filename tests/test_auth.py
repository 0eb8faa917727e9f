"""Test auth utilities and the login flow."""

from datetime import timedelta

import pytest
from httpx import AsyncClient

from trainercrm.services.auth import (
    create_trainer_token,
    decode_trainer_id,
    hash_password,
    verify_password,
)


def test_password_hashing():
    plain = "test-password-123"
    hashed = hash_password(plain)
    assert hashed != plain
    assert verify_password(plain, hashed)
    assert not verify_password("wrong", hashed)


def test_verify_against_garbage_hash():
    assert not verify_password("x", "not-a-bcrypt-hash")


def test_jwt_token():
    token = create_trainer_token("trainer-1")
    assert decode_trainer_id(token) == "trainer-1"


def test_expired_token():
    token = create_trainer_token("trainer-1", expires_delta=timedelta(seconds=-5))
    assert decode_trainer_id(token) is None


def test_invalid_token():
    assert decode_trainer_id("invalid.token.here") is None


def test_empty_token():
    assert decode_trainer_id("") is None


@pytest.mark.asyncio
async def test_login(client: AsyncClient, trainer):
    resp = await client.post(
        "/api/v1/auth/login", json={"email": "coach@example.com", "password": "secret123"}
    )
    assert resp.status_code == 200
    token = resp.json()["access_token"]
    assert decode_trainer_id(token) == trainer.id


@pytest.mark.asyncio
async def test_login_wrong_password(client: AsyncClient, trainer):
    resp = await client.post(
        "/api/v1/auth/login", json={"email": "coach@example.com", "password": "nope"}
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_login_disabled_account(client: AsyncClient, db, trainer):
    trainer.is_active = False
    await db.commit()
    resp = await client.post(
        "/api/v1/auth/login", json={"email": "coach@example.com", "password": "secret123"}
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_me(client: AsyncClient, auth_headers, trainer):
    resp = await client.get("/api/v1/auth/me", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json() == {"id": trainer.id, "email": "coach@example.com", "name": "Coach"}


@pytest.mark.asyncio
async def test_me_requires_token(client: AsyncClient):
    resp = await client.get("/api/v1/auth/me")
    assert resp.status_code in (401, 403)


@pytest.mark.asyncio
async def test_me_rejects_bad_token(client: AsyncClient):
    resp = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer junk"})
    assert resp.status_code == 401
