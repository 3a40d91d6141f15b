from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from complitest.logging_config import logger
from complitest.utils.path_manager import path_manager


class AuditTrail:
    """
    LLMの生レスポンスを1試行1ファイルで保存する

    書き込みのみで、実行時に読み返すことはない。保存に失敗してもリクエストの結果には影響させない。
    """

    def __init__(self, directory: Optional[Path] = None):
        self._directory = directory

    @property
    def directory(self) -> Path:
        return self._directory or path_manager.get_audit_dir()

    def record(self, owner_req_id: str, attempt: int, raw_text: str) -> Optional[str]:
        """
        生レスポンスを保存する

        Args:
            owner_req_id: 対象の要求仕様ID
            attempt: 試行番号（1 または 2）
            raw_text: LLMが返した生のテキスト

        Returns:
            保存したファイルのパス（失敗時は None）
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        filename = f"{path_manager.safe_filename(owner_req_id, 'unknown')}_{timestamp}_attempt{attempt}.txt"
        try:
            directory = path_manager.ensure_dir(self.directory)
            file_path = directory / filename
            file_path.write_text(raw_text or "", encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to write audit file {filename}: {e}")
            return None
        logger.debug(f"Saved raw LLM response to {file_path}")
        return str(file_path)
