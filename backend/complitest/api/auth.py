from fastapi import APIRouter, Depends

from complitest.api.deps import get_current_user
from complitest.models import User
from complitest.schemas.document import UserProfile

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me", response_model=UserProfile)
async def read_me(user: User = Depends(get_current_user)):
    """ログイン中のユーザー情報を返す"""
    return UserProfile(id=user.id, email=user.email, name=user.name, picture=user.picture)
