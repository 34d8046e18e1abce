"""
Family management routes.

This module provides REST API endpoints for:
- Family creation and listing
- Joining by invite code and leaving
- Renaming and deleting a family
- Member administration (role changes, removal)

All endpoints require an authenticated principal; role checks happen in the family manager.
"""

from fastapi import APIRouter, Depends, Query, Request, status

from family_ledger.config import settings
from family_ledger.managers.family_manager import family_manager
from family_ledger.managers.logging_manager import get_logger
from family_ledger.managers.security_manager import security_manager
from family_ledger.models.auth_models import Principal
from family_ledger.models.family_models import (
    ChangeMemberRoleRequest,
    CreateFamilyRequest,
    FamilyDetailsResponse,
    FamilyListResponse,
    FamilyResponse,
    JoinFamilyRequest,
    JoinFamilyResponse,
    MembershipResponse,
    UpdateFamilyRequest,
)
from family_ledger.models.ledger_models import MessageResponse
from family_ledger.routes.auth.dependencies import get_current_principal
from family_ledger.utils.error_handling import translate_errors

logger = get_logger(prefix="[Family Routes]")

router = APIRouter(prefix="/families", tags=["Family"])


@router.get("", response_model=FamilyListResponse)
async def list_families(principal: Principal = Depends(get_current_principal)) -> FamilyListResponse:
    """Families the current user belongs to, with their role in each."""
    with translate_errors("list_families", user_id=principal.id):
        families = await family_manager.list_families(principal.id)
    return FamilyListResponse(families=families)


@router.post("", response_model=FamilyResponse, status_code=status.HTTP_201_CREATED)
async def create_family(
    request: Request,
    family_request: CreateFamilyRequest,
    principal: Principal = Depends(get_current_principal),
) -> FamilyResponse:
    """
    Create a new family with the current user as its administrator.

    **Rate Limiting:** `FAMILY_CREATE_RATE_LIMIT` requests per `FAMILY_CREATE_RATE_PERIOD` seconds per user

    **Returns:**
    - The family, including the invite code other members join with
    """
    await security_manager.check_rate_limit(
        request,
        f"family_create_{principal.id}",
        rate_limit_requests=settings.FAMILY_CREATE_RATE_LIMIT,
        rate_limit_period=settings.FAMILY_CREATE_RATE_PERIOD,
    )
    with translate_errors("create_family", user_id=principal.id):
        family = await family_manager.create_family(principal.id, family_request.name)
    logger.info("Family created successfully: %s by user %s", family.id, principal.id)
    return FamilyResponse(family=family)


@router.post("/join", response_model=JoinFamilyResponse)
async def join_family(
    request: Request,
    join_request: JoinFamilyRequest,
    principal: Principal = Depends(get_current_principal),
) -> JoinFamilyResponse:
    """
    Join a family with an invite code (case-insensitive, `XXX-XXXX-XXX`).

    **Rate Limiting:** throttled per user to keep invite codes from being guessed.
    """
    await security_manager.check_rate_limit(
        request,
        f"family_join_{principal.id}",
        rate_limit_requests=settings.FAMILY_JOIN_RATE_LIMIT,
        rate_limit_period=settings.FAMILY_JOIN_RATE_PERIOD,
    )
    with translate_errors("join_family", user_id=principal.id):
        family, membership = await family_manager.join_family(principal.id, join_request.invite_code)
    return JoinFamilyResponse(message=f"You joined {family.name}", family=family, member=membership)


@router.get("/{family_id}", response_model=FamilyDetailsResponse)
async def get_family(family_id: str, principal: Principal = Depends(get_current_principal)) -> FamilyDetailsResponse:
    with translate_errors("get_family_details", user_id=principal.id, family_id=family_id):
        family, members, role = await family_manager.get_family_details(principal.id, family_id)
    return FamilyDetailsResponse(family=family, members=members, current_user_role=role)


@router.patch("/{family_id}", response_model=FamilyResponse)
async def rename_family(
    family_id: str,
    update_request: UpdateFamilyRequest,
    principal: Principal = Depends(get_current_principal),
) -> FamilyResponse:
    """Rename a family. Admins only."""
    with translate_errors("update_family_name", user_id=principal.id, family_id=family_id):
        family = await family_manager.update_family_name(principal.id, family_id, update_request.name)
    return FamilyResponse(family=family)


@router.delete("/{family_id}", response_model=MessageResponse)
async def delete_family(family_id: str, principal: Principal = Depends(get_current_principal)) -> MessageResponse:
    """Delete a family together with its shared ledger, limits and memberships. Admins only."""
    with translate_errors("delete_family", user_id=principal.id, family_id=family_id):
        await family_manager.delete_family(principal.id, family_id)
    return MessageResponse(message="Family deleted")


@router.post("/{family_id}/leave", response_model=MessageResponse)
async def leave_family(family_id: str, principal: Principal = Depends(get_current_principal)) -> MessageResponse:
    """
    Leave a family.

    The only admin cannot leave while other members remain; promote someone first.
    """
    with translate_errors("leave_family", user_id=principal.id, family_id=family_id):
        await family_manager.leave_family(principal.id, family_id)
    return MessageResponse(message="You left the family")


@router.patch("/{family_id}/members", response_model=MembershipResponse)
async def change_member_role(
    family_id: str,
    role_request: ChangeMemberRoleRequest,
    principal: Principal = Depends(get_current_principal),
) -> MembershipResponse:
    with translate_errors("change_member_role", user_id=principal.id, family_id=family_id):
        membership = await family_manager.change_member_role(
            principal.id, family_id, role_request.user_id, role_request.role
        )
    return MembershipResponse(member=membership)


@router.delete("/{family_id}/members", response_model=MessageResponse)
async def remove_member(
    family_id: str,
    user_id: str = Query(..., alias="userId", min_length=1),
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    with translate_errors("remove_member", user_id=principal.id, family_id=family_id):
        await family_manager.remove_member(principal.id, family_id, user_id)
    return MessageResponse(message="Member removed")
