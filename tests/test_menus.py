from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlmodel import Session, SQLModel, create_engine

from rbac_console import main as app_main
from rbac_console.domain.models import MenuCreate, MenuUpdate, PermissionCreate, UserPermission
from rbac_console.infra import db
from rbac_console.infra.auth import create_access_token
from rbac_console.services.errors import ConflictError, NotFoundError
from rbac_console.services.menu_service import MenuService
from rbac_console.services.navigation_service import NavigationService
from rbac_console.services.permission_service import PermissionService


@pytest.fixture()
def menu_client(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> Generator[TestClient, None, None]:
    db_path = tmp_path / "menu_test.db"
    test_engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
        cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    client = TestClient(app_main.app)
    yield client
    client.close()


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _admin_token(client: TestClient) -> str:
    response = client.post(
        "/api/auth/bootstrap-admin",
        json={"username": "admin", "email": "admin@example.com", "password": "admin-pass"},
    )
    assert response.status_code == 201
    login = client.post("/api/auth/login", json={"username": "admin", "password": "admin-pass"})
    assert login.status_code == 200
    return login.json()["access_token"]


def _permission(client: TestClient, token: str, name: str) -> int:
    response = client.post("/api/permissions", json={"name": name}, headers=_auth_header(token))
    assert response.status_code == 201
    return response.json()["id"]


def _menu(client: TestClient, token: str, **body: object) -> int:
    response = client.post("/api/menus", json=body, headers=_auth_header(token))
    assert response.status_code == 201, response.text
    return response.json()["id"]


def _user_with_permissions(client: TestClient, token: str, username: str, permission_ids: list[int]) -> str:
    role = client.post(
        "/api/roles",
        json={"name": f"{username}-role", "permission_ids": permission_ids},
        headers=_auth_header(token),
    )
    assert role.status_code == 201
    user = client.post(
        "/api/users",
        json={
            "email": f"{username}@example.com",
            "username": username,
            "password": f"{username}-pass",
            "role_ids": [role.json()["id"]],
        },
        headers=_auth_header(token),
    )
    assert user.status_code == 201
    login = client.post("/api/auth/login", json={"username": username, "password": f"{username}-pass"})
    assert login.status_code == 200
    return login.json()["access_token"]


def _tree(client: TestClient, token: str) -> list[dict[str, object]]:
    response = client.get("/api/menus/tree", headers=_auth_header(token))
    assert response.status_code == 200
    return response.json()


def test_menu_crud_and_parent_round_trip(menu_client: TestClient) -> None:
    token = _admin_token(menu_client)
    read = _permission(menu_client, token, "read")
    parent_id = _menu(menu_client, token, name="Settings", icon="gear", sort=2, permission_ids=[read])
    child_id = _menu(
        menu_client,
        token,
        name="Profile",
        icon="user",
        sort=1,
        path="/settings/profile",
        parent_id=parent_id,
    )

    detail = menu_client.get(f"/api/menus/{child_id}", headers=_auth_header(token))
    assert detail.status_code == 200
    assert detail.json()["parent"]["id"] == parent_id
    assert detail.json()["permissions"] == []

    children = menu_client.get(f"/api/menus/{parent_id}/children", headers=_auth_header(token))
    assert [item["id"] for item in children.json()] == [child_id]

    roots = menu_client.get("/api/menus/parent", headers=_auth_header(token))
    assert [item["id"] for item in roots.json()] == [parent_id]

    all_menus = menu_client.get("/api/menus/all", headers=_auth_header(token))
    by_id = {item["id"]: item for item in all_menus.json()}
    assert [item["id"] for item in by_id[parent_id]["permissions"]] == [read]

    renamed = menu_client.patch(
        f"/api/menus/{child_id}",
        json={"name": "My profile", "sort": 5},
        headers=_auth_header(token),
    )
    assert renamed.status_code == 200
    assert renamed.json()["name"] == "My profile"
    assert renamed.json()["parent_id"] == parent_id

    promoted_id = _menu(
        menu_client,
        token,
        name="Security",
        icon="lock",
        sort=3,
        path="/settings/security",
        parent_id=parent_id,
    )
    promoted = menu_client.patch(
        f"/api/menus/{promoted_id}",
        json={"parent_id": None},
        headers=_auth_header(token),
    )
    assert promoted.status_code == 200
    assert promoted.json()["parent_id"] is None

    deleted = menu_client.delete(f"/api/menus/{child_id}", headers=_auth_header(token))
    assert deleted.status_code == 204
    children_after = menu_client.get(f"/api/menus/{parent_id}/children", headers=_auth_header(token))
    assert children_after.status_code == 200
    assert children_after.json() == []
    assert menu_client.get(f"/api/menus/{child_id}", headers=_auth_header(token)).status_code == 404


def test_menu_validation_and_conflicts(menu_client: TestClient) -> None:
    token = _admin_token(menu_client)
    root_id = _menu(menu_client, token, name="Root", icon="home", sort=1)

    child_without_path = menu_client.post(
        "/api/menus",
        json={"name": "Orphan", "icon": "x", "sort": 1, "parent_id": root_id},
        headers=_auth_header(token),
    )
    assert child_without_path.status_code == 422

    out_of_range = menu_client.post(
        "/api/menus",
        json={"name": "Huge", "icon": "x", "sort": 40000},
        headers=_auth_header(token),
    )
    assert out_of_range.status_code == 422

    duplicate = menu_client.post(
        "/api/menus",
        json={"name": "Root", "icon": "x", "sort": 3},
        headers=_auth_header(token),
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"] == "menu name already been taken"

    unknown_parent = menu_client.post(
        "/api/menus",
        json={"name": "Lost", "icon": "x", "sort": 1, "path": "/lost", "parent_id": 999},
        headers=_auth_header(token),
    )
    assert unknown_parent.status_code == 404

    unknown_permission = menu_client.post(
        "/api/menus",
        json={"name": "Locked", "icon": "x", "sort": 1, "permission_ids": [999]},
        headers=_auth_header(token),
    )
    assert unknown_permission.status_code == 404
    assert unknown_permission.json()["detail"] == "permissions not found"


def test_menu_delete_guards_children(menu_client: TestClient) -> None:
    token = _admin_token(menu_client)
    parent_id = _menu(menu_client, token, name="Reports", icon="chart", sort=1)
    child_id = _menu(menu_client, token, name="Daily", icon="cal", sort=1, path="/daily", parent_id=parent_id)

    blocked = menu_client.delete(f"/api/menus/{parent_id}", headers=_auth_header(token))
    assert blocked.status_code == 409
    assert blocked.json()["detail"] == "menu has child menus"

    together = menu_client.request(
        "DELETE",
        "/api/menus/bulk-delete",
        json={"ids": [child_id, parent_id]},
        headers=_auth_header(token),
    )
    assert together.status_code == 204

    gone = menu_client.delete(f"/api/menus/{parent_id}", headers=_auth_header(token))
    assert gone.status_code == 404


def test_menu_parent_cycles_rejected(menu_client: TestClient) -> None:
    service = MenuService()
    top = service.create_menu(MenuCreate(name="Top", icon="t", sort=1)).menu
    middle = service.create_menu(MenuCreate(name="Middle", icon="m", sort=1, path="/m", parent_id=top.id)).menu
    bottom = service.create_menu(MenuCreate(name="Bottom", icon="b", sort=1, path="/b", parent_id=middle.id)).menu
    assert top.id is not None and bottom.id is not None

    with pytest.raises(ConflictError, match="itself"):
        service.update_menu(top.id, MenuUpdate(parent_id=top.id))
    with pytest.raises(ConflictError, match="descendant"):
        service.update_menu(top.id, MenuUpdate(parent_id=bottom.id, path="/top"))

    assert [item.id for item in service.list_children(top.id)] == [middle.id]


def test_menu_update_replaces_permissions(menu_client: TestClient) -> None:
    permissions = PermissionService()
    read = permissions.create_permission(PermissionCreate(name="read"))
    write = permissions.create_permission(PermissionCreate(name="write"))
    service = MenuService()
    menu = service.create_menu(MenuCreate(name="Docs", icon="d", sort=1, permission_ids=[read.id])).menu
    assert menu.id is not None

    renamed = service.update_menu(menu.id, MenuUpdate(icon="book"))
    assert [item.id for item in renamed.permissions] == [read.id]

    replaced = service.update_menu(menu.id, MenuUpdate(permission_ids=[write.id]))
    assert [item.id for item in replaced.permissions] == [write.id]

    cleared = service.update_menu(menu.id, MenuUpdate(permission_ids=[]))
    assert cleared.permissions == []


def test_tree_hides_filtered_child_and_keeps_parent_path(menu_client: TestClient) -> None:
    token = _admin_token(menu_client)
    p1 = _permission(menu_client, token, "p1")
    p2 = _permission(menu_client, token, "p2")
    parent_id = _menu(menu_client, token, name="M", icon="m", sort=1, path="/m", permission_ids=[p1])
    _menu(menu_client, token, name="C", icon="c", sort=1, path="/m/c", parent_id=parent_id, permission_ids=[p2])

    user_token = _user_with_permissions(menu_client, token, "viewer", [p1])
    assert _tree(menu_client, user_token) == [
        {"group": [{"id": parent_id, "title": "M", "icon": "m", "path": "/m", "sort": 1}]},
    ]


def test_tree_child_never_rescues_hidden_parent(menu_client: TestClient) -> None:
    token = _admin_token(menu_client)
    p1 = _permission(menu_client, token, "p1")
    p2 = _permission(menu_client, token, "p2")
    hidden_id = _menu(menu_client, token, name="A", icon="a", sort=1, permission_ids=[p2])
    _menu(menu_client, token, name="A1", icon="a1", sort=1, path="/a1", parent_id=hidden_id, permission_ids=[p1])
    leaf_id = _menu(menu_client, token, name="B", icon="b", sort=2, path="/b", permission_ids=[p1])

    user_token = _user_with_permissions(menu_client, token, "viewer", [p1])
    assert _tree(menu_client, user_token) == [
        {"group": [{"id": leaf_id, "title": "B", "icon": "b", "path": "/b", "sort": 2}]},
    ]


def test_tree_groups_sorted_children_and_hides_unguarded_menus(menu_client: TestClient) -> None:
    token = _admin_token(menu_client)
    p1 = _permission(menu_client, token, "p1")
    p2 = _permission(menu_client, token, "p2")
    group_id = _menu(menu_client, token, name="G", icon="g", sort=1, permission_ids=[p1])
    late = _menu(menu_client, token, name="Late", icon="l", sort=9, path="/late", parent_id=group_id, permission_ids=[p1])
    early = _menu(
        menu_client, token, name="Early", icon="e", sort=-3, path="/early", parent_id=group_id, permission_ids=[p1]
    )
    strict = _menu(
        menu_client, token, name="Strict", icon="s", sort=5, path="/strict", parent_id=group_id, permission_ids=[p1, p2]
    )
    open_id = _menu(menu_client, token, name="Open", icon="o", sort=0, path="/open")

    user_token = _user_with_permissions(menu_client, token, "viewer", [p1])
    assert _tree(menu_client, user_token) == [
        {"group": []},
        {
            "id": group_id,
            "title": "G",
            "icon": "g",
            "sort": 1,
            "group": [
                {"id": early, "title": "Early", "icon": "e", "path": "/early", "sort": -3, "group": []},
                {"id": late, "title": "Late", "icon": "l", "path": "/late", "sort": 9, "group": []},
            ],
        },
    ]

    admin_tree = _tree(menu_client, token)
    assert admin_tree[0] == {"group": [{"id": open_id, "title": "Open", "icon": "o", "path": "/open", "sort": 0}]}
    assert [node["id"] for node in admin_tree[1]["group"]] == [early, strict, late]


def test_tree_ignores_direct_user_permissions(menu_client: TestClient) -> None:
    token = _admin_token(menu_client)
    p1 = _permission(menu_client, token, "p1")
    p2 = _permission(menu_client, token, "p2")
    _menu(menu_client, token, name="Secret", icon="s", sort=1, path="/secret", permission_ids=[p2])
    user_token = _user_with_permissions(menu_client, token, "viewer", [p1])
    me = menu_client.get("/api/auth/me", headers=_auth_header(user_token)).json()

    with Session(db.get_engine()) as session:
        session.add(UserPermission(user_id=me["id"], permission_id=p2))
        session.commit()

    assert _tree(menu_client, user_token) == [{"group": []}]


def test_tree_for_unknown_user(menu_client: TestClient) -> None:
    with pytest.raises(NotFoundError):
        NavigationService().resolve_navigation(999)

    ghost_token = create_access_token(user_id=999, username="ghost")
    response = menu_client.get("/api/menus/tree", headers=_auth_header(ghost_token))
    assert response.status_code == 404


def test_tree_without_menus_is_single_empty_container(menu_client: TestClient) -> None:
    token = _admin_token(menu_client)
    assert _tree(menu_client, token) == [{"group": []}]


def test_menu_list_filter_and_sort(menu_client: TestClient) -> None:
    token = _admin_token(menu_client)
    dashboard = _menu(menu_client, token, name="Dashboard", icon="home", sort=2, path="/dash")
    reports = _menu(menu_client, token, name="Reports", icon="chart", sort=1, path="/reports/daily")
    audit = _menu(menu_client, token, name="Audit", icon="Shield", sort=3, path="/audit")

    def _ids(**params: str) -> list[int]:
        response = menu_client.get("/api/menus", params=params, headers=_auth_header(token))
        assert response.status_code == 200, response.text
        return [item["id"] for item in response.json()]

    assert _ids() == [reports, dashboard, audit]
    assert _ids(filter="REPORTS") == [reports]
    assert _ids(filter="shield") == [audit]
    assert _ids(filter="/DASH") == [dashboard]
    assert _ids(sort="name:asc") == [audit, dashboard, reports]
    assert _ids(sort="sort:desc", filter="a") == [audit, dashboard, reports]

    invalid = menu_client.get("/api/menus", params={"sort": "parent:asc"}, headers=_auth_header(token))
    assert invalid.status_code == 400
    assert invalid.json()["detail"] == "cannot sort by parent:asc"


def test_menu_admin_routes_need_super_admin_but_tree_does_not(menu_client: TestClient) -> None:
    token = _admin_token(menu_client)
    p1 = _permission(menu_client, token, "p1")
    menu_id = _menu(menu_client, token, name="Home", icon="h", sort=1, path="/home", permission_ids=[p1])
    user_token = _user_with_permissions(menu_client, token, "viewer", [p1])

    listed = menu_client.get("/api/menus", headers=_auth_header(user_token))
    assert listed.status_code == 403
    assert listed.json()["detail"] == "Missing role: super admin"

    created = menu_client.post(
        "/api/menus",
        json={"name": "Mine", "icon": "m", "sort": 1},
        headers=_auth_header(user_token),
    )
    assert created.status_code == 403
    assert menu_client.delete(f"/api/menus/{menu_id}", headers=_auth_header(user_token)).status_code == 403

    assert _tree(menu_client, user_token) == [
        {"group": [{"id": menu_id, "title": "Home", "icon": "h", "path": "/home", "sort": 1}]},
    ]
