from __future__ import annotations

import asyncio
import os
import time
from uuid import uuid4

import httpx


def _assert_status(response: httpx.Response, expected: int | tuple[int, ...]) -> None:
    expected_codes = (expected,) if isinstance(expected, int) else expected
    if response.status_code not in expected_codes:
        raise RuntimeError(
            f"{response.request.method} {response.request.url} expected {expected_codes}, "
            f"got {response.status_code}: {response.text}"
        )


def _auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _wait_ok(client: httpx.AsyncClient, path: str, timeout_seconds: float = 60.0) -> None:
    deadline = time.monotonic() + timeout_seconds
    last_status = "n/a"
    last_body = ""
    while time.monotonic() < deadline:
        try:
            response = await client.get(path)
            if response.status_code == 200:
                return
            last_status = str(response.status_code)
            last_body = response.text
        except httpx.HTTPError as exc:
            last_status = "http_error"
            last_body = str(exc)
        await asyncio.sleep(1.0)
    raise RuntimeError(f"timeout waiting for {path}, last_status={last_status}, detail={last_body}")


async def _login(client: httpx.AsyncClient, username: str, password: str) -> str:
    response = await client.post("/api/auth/login", json={"username": username, "password": password})
    _assert_status(response, 200)
    return response.json()["access_token"]


async def _run() -> None:
    base_url = os.getenv("APP_BASE_URL", "http://app:8000").rstrip("/")
    admin_username = os.getenv("SMOKE_ADMIN_USERNAME", "admin")
    admin_password = os.getenv("SMOKE_ADMIN_PASSWORD", "admin-pass")
    run_id = uuid4().hex[:8]

    timeout = httpx.Timeout(20.0)
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout) as client:
        await _wait_ok(client, "/healthz")
        await _wait_ok(client, "/readyz")

        # A second run finds the console already initialized and reuses the admin.
        bootstrap_resp = await client.post(
            "/api/auth/bootstrap-admin",
            json={
                "username": admin_username,
                "email": f"{admin_username}@example.com",
                "password": admin_password,
            },
        )
        _assert_status(bootstrap_resp, (201, 409))
        admin_token = await _login(client, admin_username, admin_password)
        admin = _auth_headers(admin_token)

        permission_resp = await client.post("/api/permissions", json={"name": f"smoke-{run_id}"}, headers=admin)
        _assert_status(permission_resp, 201)
        permission_id = permission_resp.json()["id"]

        role_resp = await client.post(
            "/api/roles",
            json={"name": f"smoke-{run_id}", "permission_ids": [permission_id]},
            headers=admin,
        )
        _assert_status(role_resp, 201)
        role_id = role_resp.json()["id"]

        menu_resp = await client.post(
            "/api/menus",
            json={
                "name": f"smoke-{run_id}",
                "icon": "check",
                "path": f"/smoke/{run_id}",
                "sort": 0,
                "permission_ids": [permission_id],
            },
            headers=admin,
        )
        _assert_status(menu_resp, 201)
        menu_id = menu_resp.json()["id"]

        username = f"smoke-{run_id}"
        password = f"pass-{run_id}"
        user_resp = await client.post(
            "/api/users",
            json={
                "email": f"{username}@example.com",
                "username": username,
                "password": password,
                "role_ids": [role_id],
            },
            headers=admin,
        )
        _assert_status(user_resp, 201)
        user_id = user_resp.json()["id"]

        user_token = await _login(client, username, password)
        tree_resp = await client.get("/api/menus/tree", headers=_auth_headers(user_token))
        _assert_status(tree_resp, 200)
        quick_access = {item["id"] for item in tree_resp.json()[0]["group"]}
        if menu_id not in quick_access:
            raise RuntimeError(f"smoke menu missing from navigation tree: {tree_resp.json()}")

        for path, ids in (
            ("/api/users/bulk-delete", [user_id]),
            ("/api/menus/bulk-delete", [menu_id]),
            ("/api/roles/bulk-delete", [role_id]),
            ("/api/permissions/bulk-delete", [permission_id]),
        ):
            delete_resp = await client.request("DELETE", path, json={"ids": ids}, headers=admin)
            _assert_status(delete_resp, 204)

        gone_resp = await client.get(f"/api/users/{user_id}", headers=admin)
        _assert_status(gone_resp, 404)

    print("verify_smoke: healthz/readyz + rbac CRUD + navigation tree + bulk delete ok")


def main() -> None:
    asyncio.run(_run())


if __name__ == "__main__":
    main()
