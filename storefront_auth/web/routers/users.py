from fastapi import APIRouter, Depends

from storefront_auth.schemas.auth import PublicUser
from storefront_auth.services.auth_service import AuthService
from storefront_auth.web.session import get_auth_service, require_admin

router = APIRouter(prefix="/api/users", dependencies=[Depends(require_admin)])


@router.get("")
async def list_users(service: AuthService = Depends(get_auth_service)):
    users = await service.list_users()
    return {
        "success": True,
        "count": len(users),
        "data": [PublicUser.model_validate(u).model_dump(mode="json") for u in users],
    }


@router.get("/{user_id}")
async def get_user(user_id: int, service: AuthService = Depends(get_auth_service)):
    user = await service.get_profile(user_id)
    return {"success": True, "data": PublicUser.model_validate(user).model_dump(mode="json")}
