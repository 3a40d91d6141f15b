"""
ドキュメントテキスト抽出モジュール

ファイルURIで参照されるドキュメントを取得し、プレーンテキストを返します。
取得・解析のどの段階で失敗しても例外は呼び出し元に伝えず、警告ログを出して空文字列を返します。
"""

import asyncio
import io
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

import docx
import httpx
import pypdf

from complitest.config import settings
from complitest.exceptions import ExtractionException, TimeoutException
from complitest.logging_config import logger
from complitest.utils.timeout import get_timeout_config, run_async_with_timeout

PDF_MAGIC = b"%PDF"
ZIP_MAGIC = b"PK\x03\x04"


def extract_text_from_pdf(pdf_bytes: bytes) -> str:
    reader = pypdf.PdfReader(io.BytesIO(pdf_bytes))
    return "\n\n".join(page.extract_text() or "" for page in reader.pages)


def extract_text_from_word(docx_bytes: bytes) -> str:
    document = docx.Document(io.BytesIO(docx_bytes))
    return "\n\n".join(p.text for p in document.paragraphs if p.text.strip())


def parse_document_bytes(content: bytes, name: str = "") -> str:
    """
    バイト列の形式を判定してテキストを取り出す

    先頭のマジックバイトを優先し、判定できない場合は拡張子を見る。どちらでもなければUTF-8テキストとして扱う。

    Raises:
        ExtractionException: PDF/DOCXの解析に失敗した場合
    """
    suffix = Path(name).suffix.lower()
    try:
        if content.startswith(PDF_MAGIC) or suffix == ".pdf":
            return extract_text_from_pdf(content)
        if (content.startswith(ZIP_MAGIC) and suffix in ("", ".docx")) or suffix == ".docx":
            return extract_text_from_word(content)
    except Exception as e:
        raise ExtractionException(f"Failed to parse {name or 'document'}: {e}", details={"name": name})
    return content.decode("utf-8", errors="replace")


class DocumentTextExtractor:
    """file:// と http(s):// のドキュメントからテキストを抽出する"""

    def __init__(
        self,
        max_bytes: Optional[int] = None,
        max_chars: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.max_bytes = max_bytes or settings.EXTRACT_MAX_BYTES
        self.max_chars = max_chars or settings.EXTRACT_MAX_CHARS
        self.timeout_seconds = timeout_seconds or get_timeout_config("DOCUMENT_FETCH")
        self._transport = transport

    async def extract(self, file_uri: Optional[str]) -> str:
        """
        ドキュメントのテキストを取得する

        Args:
            file_uri: メディアストアが返したファイルURI

        Returns:
            最大 max_chars 文字のテキスト（失敗時は空文字列）
        """
        if not file_uri:
            logger.warning("No file URI given for text extraction")
            return ""
        try:
            content, name = await run_async_with_timeout(
                self._fetch(file_uri), self.timeout_seconds, name="document fetch"
            )
            text = await asyncio.to_thread(parse_document_bytes, content, name)
        except (ExtractionException, TimeoutException) as e:
            logger.warning(f"Text extraction failed for {file_uri}: {e}")
            return ""
        return text[:self.max_chars]

    async def _fetch(self, file_uri: str) -> Tuple[bytes, str]:
        try:
            parsed = urlparse(file_uri)
        except ValueError as e:
            raise ExtractionException(f"Malformed file URI: {e}")
        if parsed.scheme == "file":
            return await asyncio.to_thread(self._read_local, Path(unquote(parsed.path)))
        if parsed.scheme in ("http", "https"):
            return await self._download(file_uri), Path(parsed.path).name
        raise ExtractionException(f"Unsupported file URI scheme: {parsed.scheme or '(none)'}")

    def _read_local(self, path: Path) -> Tuple[bytes, str]:
        try:
            size = path.stat().st_size
            if size > self.max_bytes:
                raise ExtractionException(f"Document exceeds {self.max_bytes} bytes", details={"size": size})
            return path.read_bytes(), path.name
        # NUL を含むパスは ValueError になる
        except (OSError, ValueError) as e:
            raise ExtractionException(f"Failed to read {path}: {e}")

    async def _download(self, url: str) -> bytes:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, follow_redirects=True, transport=self._transport
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    declared = response.headers.get("content-length")
                    if declared and declared.isdigit() and int(declared) > self.max_bytes:
                        raise ExtractionException(f"Document exceeds {self.max_bytes} bytes", details={"size": int(declared)})
                    buffer = bytearray()
                    async for chunk in response.aiter_bytes():
                        buffer.extend(chunk)
                        if len(buffer) > self.max_bytes:
                            raise ExtractionException(f"Document exceeds {self.max_bytes} bytes")
                    return bytes(buffer)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ExtractionException(f"Failed to download {url}: {e}")
