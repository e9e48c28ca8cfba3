"""Group membership consistency.

Group documents hold ``members`` as a list of internal user ids and the store
enforces no referential integrity, so this service keeps the lists
duplicate-free and prunes deleted users from every group.
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from scim_docstore.store.base import RecordNotFoundError, Store

from .errors import MemberNotFoundError
from .mapper import AttributeMapper, ResourceKind
from .query import QueryTranslator

logger = logging.getLogger(__name__)

USER = ResourceKind.USER.value
GROUP = ResourceKind.GROUP.value

# Membership edit that empties the member list
CLEAR = "clear"


class MembershipService:
    """Maintain group member lists against the user collection."""

    def __init__(self, store: Store, mapper: AttributeMapper, translator: Optional[QueryTranslator] = None):
        self.store = store
        self.mapper = mapper
        self.translator = translator or QueryTranslator(mapper)

    def list_groups_for(self, user_id: str) -> List[Dict[str, Any]]:
        """Return every group whose member list contains ``user_id``."""
        return self.store.find_many(GROUP, {"members": {"has": user_id}})

    def prune_user(self, user_id: str) -> List[str]:
        """Remove ``user_id`` from every group referencing it.

        Must run before the user document is deleted. A group deleted
        concurrently is skipped; other store failures propagate.

        Returns:
            Ids of the groups that were rewritten
        """
        pruned = []
        for group in self.list_groups_for(user_id):
            members = [member for member in group.get("members") or [] if member != user_id]
            try:
                self.store.update(GROUP, {"id": group["id"]}, {"members": members})
            except RecordNotFoundError:
                logger.warning(f"Group {group['id']} disappeared while pruning member {user_id}")
                continue
            pruned.append(group["id"])

        if pruned:
            logger.info(f"Pruned user {user_id} from {len(pruned)} group(s)")
        return pruned

    def resolve_member(self, user_name: Any) -> str:
        """Resolve a member reference (userName) to the internal user id.

        Raises:
            MemberNotFoundError: If no such user exists
        """
        user = self.store.find_first(USER, self.translator.identity_where(USER, user_name))
        if not user:
            raise MemberNotFoundError(str(user_name))
        return user["id"]

    def apply_membership_edits(
        self,
        group: Mapping[str, Any],
        edits: Iterable[Mapping[str, Any]],
    ) -> List[str]:
        """Fold membership edits over the group's current member list.

        Each edit is ``{"value": <userName>, "operation": "add" | "delete"}``;
        a missing operation means add. ``{"operation": "clear"}`` empties the
        list, dangling ids included. Deleting an absent member and adding a
        present one are no-ops. Every reference is resolved before the list
        is computed, so an unknown user leaves the group untouched.

        Returns:
            The new member list (not persisted)

        Raises:
            MemberNotFoundError: If an edit references an unknown user
        """
        resolved = [
            (None, CLEAR) if edit.get("operation") == CLEAR
            else (self.resolve_member(edit.get("value")), edit.get("operation"))
            for edit in edits
        ]

        members = list(group.get("members") or [])
        for user_id, operation in resolved:
            if operation == CLEAR:
                members = []
            elif operation == "delete":
                members = [member for member in members if member != user_id]
            elif user_id not in members:
                members.append(user_id)
            else:
                logger.debug(f"User {user_id} already member of group {group.get('id')}")
        return members
