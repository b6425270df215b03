"""Admin endpoints for system settings.

Provides:
- GET /v1/admin/settings/{key} - Read a setting
- PUT /v1/admin/settings/{key} - Update a setting
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from src.access.admin import AdminAction
from src.access.dependencies import require_admin_action
from src.access.errors import AccessControlError, handle_access_error
from src.auth.schemas import UserResponse

from .dependencies import SettingsServiceDep
from .schemas import SettingResponse, UpdateSettingRequest


router = APIRouter(prefix="/v1/admin/settings", tags=["admin-settings"])


@router.get(
    "/{key}",
    response_model=SettingResponse,
    summary="Get a system setting",
)
async def get_setting(
    key: str,
    service: SettingsServiceDep,
    _: Annotated[
        UserResponse | None,
        Depends(require_admin_action(AdminAction.SETTINGS_UPDATE, allow_anonymous=True)),
    ],
) -> SettingResponse:
    """Current value of a setting (its default when never written)."""
    try:
        setting = await service.get_setting(key)
    except AccessControlError as e:
        raise handle_access_error(e) from e
    return SettingResponse.from_setting(setting)


@router.put(
    "/{key}",
    response_model=SettingResponse,
    summary="Update a system setting",
)
async def update_setting(
    key: str,
    request: UpdateSettingRequest,
    service: SettingsServiceDep,
    admin: Annotated[
        UserResponse | None, Depends(require_admin_action(AdminAction.SETTINGS_UPDATE))
    ],
) -> SettingResponse:
    """Update a setting. The cached value is dropped immediately."""
    try:
        setting = await service.set(key, request.value, admin_id=admin.id)
    except AccessControlError as e:
        raise handle_access_error(e) from e
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "invalid_setting_value", "message": str(e)},
        ) from e
    return SettingResponse.from_setting(setting)
