"""HTTP endpoints for the student portal.

Provides:
- POST /v1/students/access/validate - Portal entry check
- GET  /v1/students/access/requirements - Current portal mode
- POST /v1/students/invitation-codes - Create an invitation code (teacher)
- POST /v1/students/link/redeem - Link to a teacher with a code (student)
"""

from fastapi import APIRouter, HTTPException, status

from src.access.errors import AccessControlError, handle_access_error
from src.auth.dependencies import OptionalUser, StudentUser, TeacherUser
from src.auth.permissions import UserRole
from src.core.logging import get_logger

from .dependencies import StudentGateDep, TeacherLinkServiceDep
from .schemas import (
    AccessRequirementsResponse,
    GateContext,
    GateResult,
    InvitationCodeResponse,
    RedeemCodeRequest,
    TeacherLinkResponse,
    ValidateAccessRequest,
)


logger = get_logger(__name__)

router = APIRouter(prefix="/v1/students", tags=["students"])


# ==============================================================================
# Portal gate
# ==============================================================================


@router.post(
    "/access/validate",
    response_model=GateResult,
    summary="Validate student portal access",
)
async def validate_access(
    request: ValidateAccessRequest,
    gate: StudentGateDep,
    links: TeacherLinkServiceDep,
    user: OptionalUser,
) -> GateResult:
    """Check whether the caller may enter the student portal.

    Invitation codes count only when they exist and are active. Lobby codes
    are checked by the lobby service and are taken at face value here.
    """
    has_invitation_code = False
    if request.invitation_code:
        try:
            has_invitation_code = (
                await links.get_invitation_code(request.invitation_code) is not None
            )
        except Exception as e:
            # Lookup failure counts as no code
            logger.warning("invitation_code_lookup_failed", error=str(e))

    context = GateContext(
        is_authenticated=user is not None,
        role=user.role if user else UserRole.GUEST,
        has_invitation_code=has_invitation_code,
        has_lobby_code=bool(request.lobby_code),
    )
    return await gate.validate_access(context=context)


@router.get(
    "/access/requirements",
    response_model=AccessRequirementsResponse,
    summary="Student portal requirements",
)
async def get_access_requirements(gate: StudentGateDep) -> AccessRequirementsResponse:
    """Current portal mode and what it asks of visitors."""
    return await gate.get_access_requirements()


# ==============================================================================
# Teacher links
# ==============================================================================


@router.post(
    "/invitation-codes",
    response_model=InvitationCodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an invitation code",
)
async def create_invitation_code(
    links: TeacherLinkServiceDep,
    current_user: TeacherUser,
) -> InvitationCodeResponse:
    """Create a code students can redeem to link to the caller."""
    try:
        invitation = await links.create_invitation_code(current_user.id)
    except RuntimeError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "invitation_code_unavailable", "message": str(e)},
        ) from e
    return InvitationCodeResponse.from_invitation(invitation)


@router.post(
    "/link/redeem",
    response_model=TeacherLinkResponse,
    summary="Redeem an invitation code",
)
async def redeem_invitation_code(
    request: RedeemCodeRequest,
    links: TeacherLinkServiceDep,
    current_user: StudentUser,
) -> TeacherLinkResponse:
    """Link the calling student to the teacher behind a code."""
    try:
        link = await links.redeem_invitation_code(current_user.id, request.code)
    except AccessControlError as e:
        raise handle_access_error(e) from e
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "invalid_link", "message": str(e)},
        ) from e
    return TeacherLinkResponse.from_link(link)
