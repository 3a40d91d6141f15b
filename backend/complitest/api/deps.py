from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from complitest.exceptions import AuthenticationException
from complitest.logging_config import logger
from complitest.models import User, get_session
from complitest.services.identity import GoogleIdentityVerifier, get_identity_verifier
from complitest.services.jira.bridge import JiraBridge
from complitest.services.testgen import TestcaseGenerationService
from complitest.services.teststore import TestcaseStore

bearer_scheme = HTTPBearer(auto_error=False)


def get_store(session: Session = Depends(get_session)) -> TestcaseStore:
    return TestcaseStore(session)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    store: TestcaseStore = Depends(get_store),
    verifier: GoogleIdentityVerifier = Depends(get_identity_verifier),
) -> User:
    """
    Authorization: Bearer <token> を検証し、対応するユーザーを返す

    初回のログインではユーザーを登録し、以降は最終ログイン日時を更新する。

    Raises:
        AuthenticationException: ヘッダーが無い、または検証に失敗した場合（401）
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationException("Missing or malformed Authorization header")

    claims = await verifier.verify(credentials.credentials)
    user = store.upsert_user(
        google_id=claims["sub"],
        email=claims["email"],
        name=claims.get("name"),
        picture=claims.get("picture"),
    )
    logger.debug(f"Authenticated user {user.id}")
    return user


def get_generation_service(
    store: TestcaseStore = Depends(get_store),
    user: User = Depends(get_current_user),
) -> TestcaseGenerationService:
    # LLMクライアントは最初に必要になった時点で生成する
    return TestcaseGenerationService(store, user.id)


def get_jira_bridge(store: TestcaseStore = Depends(get_store)) -> JiraBridge:
    return JiraBridge(store)
