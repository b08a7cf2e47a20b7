from __future__ import annotations

import logging
from typing import Any

from rbac_console.domain.navigation import resolve_navigation
from rbac_console.domain.permissions import is_super_admin
from rbac_console.services.menu_service import MenuService
from rbac_console.services.user_service import UserService

logger = logging.getLogger(__name__)


class NavigationService:
    """Read-only resolver: a user's roles and permissions against the live menu tree.

    Nothing is cached between calls. The user read and the menu read are not one
    snapshot, so a change committed between them can show up half-applied in a
    single response.
    """

    def __init__(self, user_service: UserService | None = None, menu_service: MenuService | None = None) -> None:
        self.users = user_service or UserService()
        self.menus = menu_service or MenuService()

    def resolve_navigation(self, user_id: int) -> list[dict[str, Any]]:
        access = self.users.get_user_access(user_id)
        entries = self.menus.menu_tree_entries()
        bypass = is_super_admin(access.role_names)
        granted = access.effective_permission_ids()
        logger.debug(
            "resolving navigation for user %s: %d menus, %d permissions, bypass=%s",
            user_id,
            len(entries),
            len(granted),
            bypass,
        )
        return resolve_navigation(entries, granted=granted, bypass=bypass)
