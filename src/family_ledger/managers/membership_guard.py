"""
Family membership checks shared by every family-scoped operation.

A missing membership and an insufficient role produce the same ``Forbidden`` error, so a caller cannot tell a
family they do not belong to from one that does not exist.
"""

from typing import Any, Dict, Optional

from family_ledger.database import FAMILY_MEMBERS, db_manager
from family_ledger.managers.logging_manager import get_logger
from family_ledger.models.family_models import FamilyRole, Membership
from family_ledger.utils.error_handling import Forbidden
from family_ledger.utils.logging_utils import log_security_event

logger = get_logger(prefix="[MEMBERSHIP_GUARD]")

ACCESS_DENIED_MSG = "Access denied to this family"


def membership_from_doc(doc: Dict[str, Any]) -> Membership:
    return Membership(
        id=doc["_id"],
        family_id=doc["family_id"],
        user_id=doc["user_id"],
        role=doc["role"],
        joined_at=doc["joined_at"],
    )


class MembershipGuard:
    def __init__(self, db_manager=None):
        self.db_manager = db_manager or globals()["db_manager"]
        self.logger = logger

    async def _find_membership(self, principal_id: str, family_id: str) -> Optional[Dict[str, Any]]:
        query = {"family_id": family_id, "user_id": principal_id}
        start_time = self.db_manager.log_query_start(FAMILY_MEMBERS, "find_one", query)
        doc = await self.db_manager.get_collection(FAMILY_MEMBERS).find_one(query)
        self.db_manager.log_query_success(FAMILY_MEMBERS, "find_one", start_time, 1 if doc else 0)
        return doc

    def _deny(self, principal_id: str, family_id: str, reason: str) -> Forbidden:
        log_security_event(
            event_type="family_access_denied",
            user_id=principal_id,
            success=False,
            details={"family_id": family_id, "reason": reason},
        )
        return Forbidden(ACCESS_DENIED_MSG, "ACCESS_DENIED")

    async def require_member(self, principal_id: str, family_id: str) -> Membership:
        """
        Return the principal's membership in the family.

        Raises:
            Forbidden: If the principal is not a member (or the family does not exist).
        """
        doc = await self._find_membership(principal_id, family_id)
        if doc is None:
            raise self._deny(principal_id, family_id, "not_member")
        return membership_from_doc(doc)

    async def require_admin(self, principal_id: str, family_id: str) -> Membership:
        """Like ``require_member`` but the membership must carry the ADMIN role."""
        doc = await self._find_membership(principal_id, family_id)
        if doc is None:
            raise self._deny(principal_id, family_id, "not_member")
        if doc["role"] != FamilyRole.ADMIN.value:
            raise self._deny(principal_id, family_id, "not_admin")
        return membership_from_doc(doc)

    @staticmethod
    def can_modify_entry(membership: Membership, creator_id: str) -> bool:
        """Entries in a family ledger may be changed by whoever recorded them or by an admin."""
        return membership.user_id == creator_id or membership.role == FamilyRole.ADMIN


membership_guard = MembershipGuard()
