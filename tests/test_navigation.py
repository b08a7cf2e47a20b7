from __future__ import annotations

from rbac_console.domain.models import Permission
from rbac_console.domain.navigation import MenuEntry, build_tree, filter_menus, link_menu_tree, resolve_navigation
from rbac_console.domain.permissions import effective_permissions, has_menu_access, is_super_admin


def _entries(*entries: MenuEntry) -> list[MenuEntry]:
    return link_menu_tree(sorted(entries, key=lambda item: item.sort))


def test_has_menu_access_requires_every_permission() -> None:
    assert has_menu_access({1, 2}, {1, 2, 3})
    assert not has_menu_access({1, 2}, {1})
    assert not has_menu_access(set(), {1, 2, 3})


def test_effective_permissions_union_is_deduplicated() -> None:
    read = Permission(id=1, name="read")
    write = Permission(id=2, name="write")
    merged = effective_permissions([[write, read], [read]])
    assert [item.id for item in merged] == [1, 2]
    assert effective_permissions([]) == []


def test_super_admin_role_name_is_exact() -> None:
    assert is_super_admin(["staff", "super admin"])
    assert not is_super_admin(["Super Admin", "superadmin"])


def test_link_menu_tree_keeps_input_order() -> None:
    root = MenuEntry(id=1, name="root", icon="r", path=None, sort=1)
    second = MenuEntry(id=3, name="second", icon="s", path="/s", sort=2, parent_id=1)
    first = MenuEntry(id=2, name="first", icon="f", path="/f", sort=0, parent_id=1)
    linked = {entry.id: entry for entry in _entries(root, second, first)}
    assert [child.id for child in linked[1].children] == [2, 3]
    assert linked[2].children == []


def test_filter_does_not_mutate_input() -> None:
    root = MenuEntry(id=1, name="root", icon="r", path=None, sort=1, permission_ids=frozenset({1}))
    child = MenuEntry(id=2, name="child", icon="c", path="/c", sort=1, parent_id=1, permission_ids=frozenset({2}))
    entries = _entries(root, child)

    visible = filter_menus(entries, {1})
    assert [entry.id for entry in visible] == [1]
    assert visible[0].children == []
    assert [item.id for item in root.children] == [2]


def test_childless_visible_root_moves_to_container_with_path() -> None:
    root = MenuEntry(id=1, name="M", icon="m", path="/m", sort=1, permission_ids=frozenset({1}))
    child = MenuEntry(id=2, name="C", icon="c", path="/m/c", sort=1, parent_id=1, permission_ids=frozenset({2}))
    tree = resolve_navigation(_entries(root, child), granted={1})
    assert tree == [{"group": [{"id": 1, "title": "M", "icon": "m", "path": "/m", "sort": 1}]}]


def test_hidden_parent_hides_visible_child() -> None:
    parent = MenuEntry(id=1, name="A", icon="a", path=None, sort=1, permission_ids=frozenset({2}))
    child = MenuEntry(id=2, name="A1", icon="a1", path="/a1", sort=1, parent_id=1, permission_ids=frozenset({1}))
    leaf = MenuEntry(id=3, name="B", icon="b", path="/b", sort=2, permission_ids=frozenset({1}))
    tree = resolve_navigation(_entries(parent, child, leaf), granted={1})
    assert tree == [{"group": [{"id": 3, "title": "B", "icon": "b", "path": "/b", "sort": 2}]}]


def test_bypass_keeps_unguarded_menus() -> None:
    unguarded = MenuEntry(id=1, name="Open", icon="o", path="/open", sort=1)
    assert resolve_navigation(_entries(unguarded), granted=set()) == [{"group": []}]
    assert resolve_navigation(_entries(unguarded), granted=set(), bypass=True) == [
        {"group": [{"id": 1, "title": "Open", "icon": "o", "path": "/open", "sort": 1}]},
    ]


def test_group_node_drops_path_and_sorts_children() -> None:
    parent = MenuEntry(id=1, name="G", icon="g", path="/g", sort=3, permission_ids=frozenset({1}))
    late = MenuEntry(id=2, name="late", icon="l", path="/l", sort=7, parent_id=1, permission_ids=frozenset({1}))
    early = MenuEntry(id=3, name="early", icon="e", path="/e", sort=-1, parent_id=1, permission_ids=frozenset({1}))
    # Children arrive unsorted; the shaped group is still ordered by sort.
    entries = link_menu_tree([parent, late, early])

    tree = build_tree(filter_menus(entries, {1}))
    assert tree[0] == {"group": []}
    assert tree[1] == {
        "id": 1,
        "title": "G",
        "icon": "g",
        "sort": 3,
        "group": [
            {"id": 3, "title": "early", "icon": "e", "path": "/e", "sort": -1, "group": []},
            {"id": 2, "title": "late", "icon": "l", "path": "/l", "sort": 7, "group": []},
        ],
    }


def test_roots_keep_sort_order_in_both_shapes() -> None:
    first = MenuEntry(id=1, name="first", icon="1", path="/1", sort=1, permission_ids=frozenset({1}))
    group = MenuEntry(id=2, name="group", icon="2", path=None, sort=2, permission_ids=frozenset({1}))
    member = MenuEntry(id=3, name="member", icon="3", path="/3", sort=1, parent_id=2, permission_ids=frozenset({1}))
    last = MenuEntry(id=4, name="last", icon="4", path="/4", sort=9, permission_ids=frozenset({1}))

    tree = resolve_navigation(_entries(first, group, member, last), granted={1})
    assert [node["id"] for node in tree[0]["group"]] == [1, 4]
    assert [node["id"] for node in tree[1:]] == [2]


def test_empty_menu_table() -> None:
    assert resolve_navigation([], granted={1}) == [{"group": []}]
