from __future__ import annotations

from collections.abc import Collection, Iterable

from rbac_console.domain.models import Permission

SUPER_ADMIN_ROLE = "super admin"
DEFAULT_PASSWORD = "12345678"


def effective_permissions(role_permissions: Iterable[Iterable[Permission]]) -> list[Permission]:
    """Union of every role's permissions, deduplicated by id and ordered by id.

    Recomputed on each call; nothing is cached on the user.
    """
    by_id: dict[int, Permission] = {}
    for permissions in role_permissions:
        for permission in permissions:
            if permission.id is None:
                continue
            by_id.setdefault(permission.id, permission)
    return [by_id[key] for key in sorted(by_id)]


def is_super_admin(role_names: Iterable[str]) -> bool:
    return any(name == SUPER_ADMIN_ROLE for name in role_names)


def has_menu_access(required: Collection[int], granted: Collection[int]) -> bool:
    # A menu without required permissions is hidden, not public.
    if not required:
        return False
    return all(permission_id in granted for permission_id in required)
