"""Shapes the menu hierarchy into the navigation payload a user is allowed to see.

The payload has two shapes: a leading container ``{"group": [...]}`` holding
every visible root menu without children (quick-access items), followed by one
node per root category that still has visible children.
"""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from rbac_console.domain.permissions import has_menu_access


@dataclass
class MenuEntry:
    id: int
    name: str
    icon: str
    path: str | None
    sort: int
    parent_id: int | None = None
    permission_ids: frozenset[int] = frozenset()
    children: list[MenuEntry] = field(default_factory=list)


def link_menu_tree(entries: Sequence[MenuEntry]) -> list[MenuEntry]:
    """Fill ``children`` from ``parent_id``, keeping the order of ``entries``."""
    by_id = {entry.id: entry for entry in entries}
    for entry in entries:
        entry.children = []
    for entry in entries:
        if entry.parent_id is not None and entry.parent_id in by_id:
            by_id[entry.parent_id].children.append(entry)
    return list(entries)


def filter_menus(entries: Sequence[MenuEntry], granted: Collection[int]) -> list[MenuEntry]:
    # Each level is checked on its own; a child never rescues a hidden parent.
    visible: list[MenuEntry] = []
    for entry in entries:
        if not has_menu_access(entry.permission_ids, granted):
            continue
        visible.append(replace(entry, children=filter_menus(entry.children, granted)))
    return visible


def build_node(entry: MenuEntry) -> dict[str, Any]:
    node: dict[str, Any] = {
        "id": entry.id,
        "title": entry.name,
        "icon": entry.icon,
        "path": entry.path,
        "sort": entry.sort,
        "group": [],
    }
    if entry.children:
        node["group"] = [build_node(child) for child in entry.children]
        del node["path"]
    return node


def build_tree(entries: Sequence[MenuEntry]) -> list[dict[str, Any]]:
    roots = [build_node(entry) for entry in entries if entry.parent_id is None]
    for root in roots:
        root["group"].sort(key=lambda item: item["sort"])

    ungrouped: list[dict[str, Any]] = []
    for root in roots:
        if not root["group"]:
            del root["group"]
            ungrouped.append(root)

    return [{"group": ungrouped}, *[root for root in roots if root.get("group")]]


def resolve_navigation(
    entries: Sequence[MenuEntry],
    *,
    granted: Collection[int],
    bypass: bool = False,
) -> list[dict[str, Any]]:
    """Filter ``entries`` (linked, sorted by ``sort``) and shape the payload.

    ``bypass`` skips permission filtering entirely.
    """
    visible = list(entries) if bypass else filter_menus(entries, granted)
    return build_tree(visible)
