"""
メディアストア連携モジュール

アップロードされたドキュメントを保存し、後でテキスト抽出やプロンプト添付に使うファイルURIを得ます。
ストアの応答形式は実装によって異なるため、URIの取り出し候補は FILE_URI_CANDIDATES に順序付きで一元化しています。
"""

import abc
import asyncio
import uuid
from typing import Any, Dict, Optional

import httpx

from complitest.config import settings
from complitest.exceptions import MediaStoreException
from complitest.logging_config import logger
from complitest.utils.path_manager import path_manager
from complitest.utils.timeout import get_timeout_config

# ファイルURIが入っている可能性のあるフィールド（先頭から順に試す）
FILE_URI_CANDIDATES = ("file.uri", "file.url", "uri", "name", "resourceName")


def _lookup(raw: Any, dotted: str) -> Any:
    value = raw
    for key in dotted.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    return value


def extract_file_uri(raw: Any) -> Optional[str]:
    """
    ストアの応答からファイルURIを取り出す

    Returns:
        最初に見つかった空でない文字列（見つからなければ None）
    """
    for candidate in FILE_URI_CANDIDATES:
        value = _lookup(raw, candidate)
        if isinstance(value, str) and value.strip():
            return value
    return None


class MediaStore(abc.ABC):
    """メディアストアの抽象基底クラス"""

    @abc.abstractmethod
    async def upload(self, content: bytes, filename: str, mime_type: str, owner: Optional[int] = None) -> Dict[str, Any]:
        """ファイルを保存し、ストアの生の応答を返す"""


class LocalMediaStore(MediaStore):
    """UPLOAD_DIR 配下に保存し、file:// URIを返す"""

    async def upload(self, content: bytes, filename: str, mime_type: str, owner: Optional[int] = None) -> Dict[str, Any]:
        directory = path_manager.get_upload_dir(owner)
        stored_name = f"{uuid.uuid4().hex[:12]}_{path_manager.safe_filename(filename)}"
        try:
            path_manager.ensure_dir(directory)
            target = directory / stored_name
            await asyncio.to_thread(target.write_bytes, content)
        except OSError as e:
            logger.error(f"Failed to store upload {filename}: {e}")
            raise MediaStoreException(f"ファイルの保存に失敗しました: {e}", details={"filename": filename})
        uri = target.resolve().as_uri()
        logger.info(f"Stored {filename} locally as {uri}")
        return {
            "file": {
                "uri": uri,
                "displayName": filename,
                "mimeType": mime_type,
                "sizeBytes": len(content),
            }
        }


class HttpMediaStore(MediaStore):
    """MEDIA_STORE_URL にmultipartでアップロードする"""

    def __init__(self, base_url: str, api_key: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url
        self.api_key = api_key
        self._transport = transport

    async def upload(self, content: bytes, filename: str, mime_type: str, owner: Optional[int] = None) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        try:
            async with httpx.AsyncClient(
                timeout=get_timeout_config("HTTP_REQUEST"), transport=self._transport
            ) as client:
                response = await client.post(
                    self.base_url,
                    headers=headers,
                    files={"file": (filename, content, mime_type)},
                    data={"displayName": filename},
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Media store upload failed for {filename}: {e}")
            raise MediaStoreException("SDK upload failed", details={"error": str(e), "filename": filename})
        except ValueError as e:
            raise MediaStoreException("Media store returned a non-JSON response", details={"error": str(e)})
        return payload if isinstance(payload, dict) else {"response": payload}


def get_media_store() -> MediaStore:
    """設定に応じてメディアストアを選ぶ"""
    if settings.MEDIA_STORE_URL:
        return HttpMediaStore(settings.MEDIA_STORE_URL, settings.MEDIA_STORE_API_KEY)
    return LocalMediaStore()
