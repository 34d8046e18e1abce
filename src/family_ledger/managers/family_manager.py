"""
Family management: creation with invite codes, joining, leaving, renaming, deletion and member administration.

Membership invariant: a family with at least one member has at least one ADMIN. Every operation that can remove
an admin (leave, demote) or add a member runs inside a MongoDB transaction that also bumps the family's
``membership_version``; two such transactions on the same family therefore write-conflict and one of them fails
with ``CONCURRENT_MODIFICATION`` instead of both passing their checks against a stale view.

On deployments without transactions (standalone mongod) the same steps run unwrapped and are followed by a
post-condition check that undoes the change when the invariant broke.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from pymongo.errors import DuplicateKeyError, PyMongoError

from family_ledger.config import settings
from family_ledger.database import (
    FAMILIES,
    FAMILY_CATEGORIES,
    FAMILY_MEMBERS,
    FAMILY_TRANSACTIONS,
    SPENDING_LIMITS,
    USERS,
    db_manager,
)
from family_ledger.managers.logging_manager import get_logger
from family_ledger.managers.membership_guard import MembershipGuard, membership_from_doc, membership_guard
from family_ledger.models.family_models import (
    FAMILY_NAME_MAX_LENGTH,
    Family,
    FamilyRole,
    FamilySummary,
    MemberDetail,
    Membership,
)
from family_ledger.utils.error_handling import (
    CodeGenerationExhausted,
    Conflict,
    Forbidden,
    NotFound,
    StateViolation,
    ValidationError,
)
from family_ledger.utils.invite_codes import generate_invite_code, is_valid_invite_code, normalize_invite_code
from family_ledger.utils.logging_utils import log_performance, log_security_event
from family_ledger.utils.storage import new_id, utc_now

logger = get_logger(prefix="[FAMILY]")

VALID_ROLES = {role.value for role in FamilyRole}


def family_from_doc(doc: Dict[str, Any]) -> Family:
    return Family(
        id=doc["_id"],
        name=doc["name"],
        invite_code=doc["invite_code"],
        created_by=doc["created_by"],
        created_at=doc["created_at"],
    )


def validate_family_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Family name is required", "INVALID_FAMILY_NAME")
    if len(name) > FAMILY_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Family name must be at most {FAMILY_NAME_MAX_LENGTH} characters", "INVALID_FAMILY_NAME"
        )
    return name


def _is_invite_code_collision(error: DuplicateKeyError) -> bool:
    details = error.details or {}
    key_pattern = details.get("keyPattern") or details.get("keyValue") or {}
    return "invite_code" in key_pattern or "invite_code" in str(error)


class FamilyManager:
    """
    Family registry with dependency injection and transaction safety.

    All methods take the acting user's id first; authorization is delegated to the membership guard.
    """

    def __init__(self, db_manager=None, guard: Optional[MembershipGuard] = None) -> None:
        self.db_manager = db_manager or globals()["db_manager"]
        self.guard = guard or membership_guard
        self.logger = logger

    def _families(self):
        return self.db_manager.get_collection(FAMILIES)

    def _members(self):
        return self.db_manager.get_collection(FAMILY_MEMBERS)

    @asynccontextmanager
    async def _atomic(self, operation: str) -> AsyncIterator[Optional[Any]]:
        """Run a block in a transaction, reporting write conflicts as ``CONCURRENT_MODIFICATION``."""
        try:
            async with self.db_manager.transaction() as session:
                yield session
        except PyMongoError as e:
            if e.has_error_label("TransientTransactionError"):
                self.logger.warning("Concurrent modification detected during %s: %s", operation, e)
                raise Conflict(
                    "The family was modified concurrently, please retry", "CONCURRENT_MODIFICATION"
                ) from e
            raise

    async def _bump_membership_version(self, family_id: str, session) -> None:
        await self._families().update_one(
            {"_id": family_id}, {"$inc": {"membership_version": 1}}, session=session
        )

    async def _find_membership(self, family_id: str, user_id: str, session=None) -> Optional[Dict[str, Any]]:
        return await self._members().find_one({"family_id": family_id, "user_id": user_id}, session=session)

    async def _count_admins(self, family_id: str, session=None) -> int:
        return await self._members().count_documents(
            {"family_id": family_id, "role": FamilyRole.ADMIN.value}, session=session
        )

    async def _count_members(self, family_id: str, session=None) -> int:
        return await self._members().count_documents({"family_id": family_id}, session=session)

    # Creation

    @log_performance("create_family")
    async def create_family(self, owner_id: str, name: str) -> Family:
        """
        Create a family with the owner as its only ADMIN.

        Args:
            owner_id: User creating the family.
            name: Display name, 1 to 100 characters after trimming.

        Returns:
            Family: The created family, including its invite code.

        Raises:
            ValidationError: If the name is empty or too long.
            CodeGenerationExhausted: If every drawn invite code collided.
        """
        name = validate_family_name(name)
        max_attempts = settings.INVITE_CODE_MAX_ATTEMPTS

        for attempt in range(1, max_attempts + 1):
            invite_code = generate_invite_code()
            if await self._families().find_one({"invite_code": invite_code}):
                self.logger.info("Invite code collision on attempt %d/%d", attempt, max_attempts)
                continue
            try:
                family_doc = await self._insert_family_with_admin(owner_id, name, invite_code)
            except DuplicateKeyError as e:
                if not _is_invite_code_collision(e):
                    raise
                self.logger.info("Invite code collision at insert on attempt %d/%d", attempt, max_attempts)
                continue

            self.logger.info("Family %s created by user %s", family_doc["_id"], owner_id)
            log_security_event(
                event_type="family_create", user_id=owner_id, success=True, details={"family_id": family_doc["_id"]}
            )
            return family_from_doc(family_doc)

        self.logger.error(
            "Invite code generation exhausted after %d attempts for user %s; the code space may be saturated",
            max_attempts,
            owner_id,
        )
        raise CodeGenerationExhausted("Could not generate a unique invite code, please try again")

    async def _insert_family_with_admin(self, owner_id: str, name: str, invite_code: str) -> Dict[str, Any]:
        now = utc_now()
        family_doc = {
            "_id": new_id(),
            "name": name,
            "invite_code": invite_code,
            "created_by": owner_id,
            "created_at": now,
            "membership_version": 0,
        }
        member_doc = {
            "_id": new_id(),
            "family_id": family_doc["_id"],
            "user_id": owner_id,
            "role": FamilyRole.ADMIN.value,
            "joined_at": now,
        }

        start_time = self.db_manager.log_query_start(FAMILIES, "create_family", {"created_by": owner_id})
        try:
            async with self._atomic("create_family") as session:
                await self._families().insert_one(family_doc, session=session)
                try:
                    await self._members().insert_one(member_doc, session=session)
                except PyMongoError:
                    if session is None:
                        # No transaction to roll back: remove the family so no admin-less family remains.
                        self.logger.warning("Compensating delete of family %s after failed admin insert", family_doc["_id"])
                        await self._families().delete_one({"_id": family_doc["_id"]})
                    raise
        except PyMongoError as e:
            self.db_manager.log_query_error(FAMILIES, "create_family", start_time, e, {"created_by": owner_id})
            raise
        self.db_manager.log_query_success(FAMILIES, "create_family", start_time, 1)
        return family_doc

    # Queries

    async def list_families(self, user_id: str) -> List[FamilySummary]:
        """Families the user belongs to, with the user's role and join time, oldest membership first."""
        start_time = self.db_manager.log_query_start(FAMILY_MEMBERS, "find", {"user_id": user_id})
        memberships = await self._members().find({"user_id": user_id}).sort("joined_at", 1).to_list(length=None)
        if not memberships:
            self.db_manager.log_query_success(FAMILY_MEMBERS, "find", start_time, 0)
            return []

        family_ids = [m["family_id"] for m in memberships]
        families = await self._families().find({"_id": {"$in": family_ids}}).to_list(length=None)
        self.db_manager.log_query_success(FAMILY_MEMBERS, "find", start_time, len(memberships))
        by_id = {f["_id"]: f for f in families}

        summaries = []
        for membership in memberships:
            family = by_id.get(membership["family_id"])
            if family is None:
                continue
            summaries.append(
                FamilySummary(
                    **family_from_doc(family).model_dump(),
                    role=membership["role"],
                    joined_at=membership["joined_at"],
                )
            )
        return summaries

    async def get_family_details(
        self, requester_id: str, family_id: str
    ) -> Tuple[Family, List[MemberDetail], FamilyRole]:
        """
        The family, its members (with user name and email) and the requester's role.

        Raises:
            Forbidden: If the requester is not a member, whether or not the family exists.
        """
        membership = await self.guard.require_member(requester_id, family_id)
        family = await self._families().find_one({"_id": family_id})
        if family is None:
            raise NotFound("Family not found", "FAMILY_NOT_FOUND")

        member_docs = await self._members().find({"family_id": family_id}).sort("joined_at", 1).to_list(length=None)
        user_ids = [m["user_id"] for m in member_docs]
        users = await self.db_manager.get_collection(USERS).find(
            {"_id": {"$in": user_ids}}, {"password_digest": 0}
        ).to_list(length=None)
        users_by_id = {u["_id"]: u for u in users}

        members = [
            MemberDetail(
                id=m["_id"],
                user_id=m["user_id"],
                role=m["role"],
                joined_at=m["joined_at"],
                user_name=users_by_id.get(m["user_id"], {}).get("name"),
                user_email=users_by_id.get(m["user_id"], {}).get("email"),
            )
            for m in member_docs
        ]
        return family_from_doc(family), members, membership.role

    # Membership changes

    @log_performance("join_family")
    async def join_family(self, user_id: str, invite_code: str) -> Tuple[Family, Membership]:
        """
        Join a family by invite code as a MEMBER.

        A family left memberless by its last admin has no admin to hand out roles, so whoever joins it next
        becomes its ADMIN.

        Raises:
            ValidationError: If the code is not in XXX-XXXX-XXX form.
            NotFound: If no family has this code.
            Conflict: If the user already belongs to the family.
        """
        if not is_valid_invite_code(invite_code):
            raise ValidationError("Invalid invite code format", "INVALID_INVITE_CODE")
        code = normalize_invite_code(invite_code)

        family = await self._families().find_one({"invite_code": code})
        if family is None:
            log_security_event(event_type="family_join", user_id=user_id, success=False, details={"reason": "unknown_code"})
            raise NotFound("Invalid invite code", "INVITE_CODE_NOT_FOUND")

        family_id = family["_id"]
        if await self._find_membership(family_id, user_id):
            raise Conflict("You are already a member of this family", "ALREADY_MEMBER")

        member_doc = {
            "_id": new_id(),
            "family_id": family_id,
            "user_id": user_id,
            "role": FamilyRole.MEMBER.value,
            "joined_at": utc_now(),
        }
        try:
            async with self._atomic("join_family") as session:
                await self._bump_membership_version(family_id, session)
                if await self._count_admins(family_id, session=session) == 0:
                    member_doc["role"] = FamilyRole.ADMIN.value
                await self._members().insert_one(member_doc, session=session)
        except DuplicateKeyError as e:
            raise Conflict("You are already a member of this family", "ALREADY_MEMBER") from e

        self.logger.info("User %s joined family %s", user_id, family_id)
        log_security_event(event_type="family_join", user_id=user_id, success=True, details={"family_id": family_id})
        return family_from_doc(family), membership_from_doc(member_doc)

    @log_performance("leave_family")
    async def leave_family(self, user_id: str, family_id: str) -> None:
        """
        Remove the user's own membership.

        The only admin may leave only when nobody else remains; the family then stays memberless.

        Raises:
            Forbidden: If the user is not a member.
            StateViolation: If the user is the last admin and other members remain.
        """
        async with self._atomic("leave_family") as session:
            membership = await self._find_membership(family_id, user_id, session=session)
            if membership is None:
                raise Forbidden("You are not a member of this family", "NOT_MEMBER")
            await self._bump_membership_version(family_id, session)

            if membership["role"] == FamilyRole.ADMIN.value:
                remaining = await self._count_members(family_id, session=session) - 1
                admins = await self._count_admins(family_id, session=session)
                if remaining > 0 and admins <= 1:
                    raise StateViolation(
                        "You are the only admin. Promote another member before leaving.", "LAST_ADMIN"
                    )

            await self._members().delete_one({"_id": membership["_id"]}, session=session)

        if session is None:
            await self._restore_if_adminless(
                family_id,
                "leave_family",
                lambda: self._members().insert_one(membership),
            )

        self.logger.info("User %s left family %s", user_id, family_id)
        log_security_event(event_type="family_leave", user_id=user_id, success=True, details={"family_id": family_id})

    async def _restore_if_adminless(self, family_id: str, operation: str, restore) -> None:
        """Non-transactional post-check: undo the change if the family now has members but no admin."""
        if await self._count_members(family_id) > 0 and await self._count_admins(family_id) == 0:
            self.logger.error("Family %s lost its last admin during %s; restoring", family_id, operation)
            await restore()
            raise Conflict("The family was modified concurrently, please retry", "CONCURRENT_MODIFICATION")

    async def update_family_name(self, requester_id: str, family_id: str, name: str) -> Family:
        """Rename a family (ADMIN only)."""
        await self.guard.require_admin(requester_id, family_id)
        name = validate_family_name(name)
        await self._families().update_one({"_id": family_id}, {"$set": {"name": name}})
        family = await self._families().find_one({"_id": family_id})
        if family is None:
            raise NotFound("Family not found", "FAMILY_NOT_FOUND")
        self.logger.info("Family %s renamed by %s", family_id, requester_id)
        return family_from_doc(family)

    @log_performance("delete_family")
    async def delete_family(self, requester_id: str, family_id: str) -> None:
        """Delete a family with its ledger, spending limits and memberships (ADMIN only)."""
        await self.guard.require_admin(requester_id, family_id)
        async with self._atomic("delete_family") as session:
            for collection_name in (SPENDING_LIMITS, FAMILY_TRANSACTIONS, FAMILY_CATEGORIES):
                await self.db_manager.get_collection(collection_name).delete_many(
                    {"family_id": family_id}, session=session
                )
            await self._families().delete_one({"_id": family_id}, session=session)
            # Memberships go last so an interrupted cascade stays visible and admin-controlled.
            await self._members().delete_many({"family_id": family_id}, session=session)

        self.logger.info("Family %s deleted by %s", family_id, requester_id)
        log_security_event(
            event_type="family_delete", user_id=requester_id, success=True, details={"family_id": family_id}
        )

    async def remove_member(self, requester_id: str, family_id: str, target_user_id: str) -> None:
        """
        Remove another member (ADMIN only).

        Raises:
            ValidationError: If the admin targets themselves (leave instead).
            NotFound: If the target is not a member.
        """
        await self.guard.require_admin(requester_id, family_id)
        if target_user_id == requester_id:
            raise ValidationError("Use leave to remove yourself from a family", "CANNOT_REMOVE_SELF")

        async with self._atomic("remove_member") as session:
            target = await self._find_membership(family_id, target_user_id, session=session)
            if target is None:
                raise NotFound("Member not found", "MEMBER_NOT_FOUND")
            await self._bump_membership_version(family_id, session)
            await self._members().delete_one({"_id": target["_id"]}, session=session)

        if session is None:
            await self._restore_if_adminless(family_id, "remove_member", lambda: self._members().insert_one(target))

        self.logger.info("User %s removed from family %s by %s", target_user_id, family_id, requester_id)
        log_security_event(
            event_type="family_member_removed",
            user_id=requester_id,
            success=True,
            details={"family_id": family_id, "target_user_id": target_user_id},
        )

    async def change_member_role(
        self, requester_id: str, family_id: str, target_user_id: str, role: str
    ) -> Membership:
        """
        Set a member's role (ADMIN only).

        Raises:
            StateViolation: For an unknown role, or when demoting the family's only admin.
            NotFound: If the target is not a member.
        """
        await self.guard.require_admin(requester_id, family_id)
        if role not in VALID_ROLES:
            raise StateViolation("Role must be ADMIN or MEMBER", "INVALID_ROLE")

        async with self._atomic("change_member_role") as session:
            target = await self._find_membership(family_id, target_user_id, session=session)
            if target is None:
                raise NotFound("Member not found", "MEMBER_NOT_FOUND")
            await self._bump_membership_version(family_id, session)

            if target["role"] == FamilyRole.ADMIN.value and role == FamilyRole.MEMBER.value:
                if await self._count_admins(family_id, session=session) <= 1:
                    raise StateViolation("A family must keep at least one admin", "LAST_ADMIN")

            await self._members().update_one({"_id": target["_id"]}, {"$set": {"role": role}}, session=session)

        if session is None:
            await self._restore_if_adminless(
                family_id,
                "change_member_role",
                lambda: self._members().update_one({"_id": target["_id"]}, {"$set": {"role": target["role"]}}),
            )

        self.logger.info("User %s in family %s set to %s by %s", target_user_id, family_id, role, requester_id)
        log_security_event(
            event_type="family_role_change",
            user_id=requester_id,
            success=True,
            details={"family_id": family_id, "target_user_id": target_user_id, "role": role},
        )
        updated = dict(target, role=role)
        return membership_from_doc(updated)


family_manager = FamilyManager()
