from typing import Any, Dict, Optional

import httpx

from complitest.config import settings
from complitest.exceptions import AuthenticationException
from complitest.logging_config import logger
from complitest.utils.timeout import get_timeout_config


class GoogleIdentityVerifier:
    """GoogleのIDトークンを tokeninfo エンドポイントで検証する"""

    def __init__(
        self,
        client_id: Optional[str] = None,
        tokeninfo_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id if client_id is not None else settings.GOOGLE_CLIENT_ID
        self.tokeninfo_url = tokeninfo_url or settings.GOOGLE_TOKENINFO_URL
        self._transport = transport

    async def verify(self, token: str) -> Dict[str, Any]:
        """
        トークンを検証してクレームを返す

        Returns:
            sub, email, name, picture を含む辞書

        Raises:
            AuthenticationException: トークンが無効な場合
        """
        try:
            async with httpx.AsyncClient(
                timeout=get_timeout_config("HTTP_REQUEST"), transport=self._transport
            ) as client:
                response = await client.get(self.tokeninfo_url, params={"id_token": token})
        except httpx.HTTPError as e:
            logger.warning(f"Token verification request failed: {e}")
            raise AuthenticationException("トークンの検証に失敗しました")

        if response.status_code != 200:
            raise AuthenticationException("無効なトークンです")
        try:
            claims = response.json()
        except ValueError:
            raise AuthenticationException("無効なトークンです")

        if self.client_id and claims.get("aud") != self.client_id:
            raise AuthenticationException("トークンの発行先が一致しません")
        if not claims.get("sub") or not claims.get("email"):
            raise AuthenticationException("トークンにユーザー情報が含まれていません")

        return {
            "sub": claims["sub"],
            "email": claims["email"],
            "name": claims.get("name"),
            "picture": claims.get("picture"),
        }


def get_identity_verifier() -> GoogleIdentityVerifier:
    return GoogleIdentityVerifier()
