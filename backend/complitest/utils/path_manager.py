import re
from pathlib import Path
from typing import Optional, Union
from functools import lru_cache

from complitest.config import settings
from complitest.logging_config import logger

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class PathManager:
    """
    パス管理クラス

    アップロードファイルと監査ログの保存先を一元化する。
    ディレクトリは settings から都度解決するため、実行中の設定変更にも追従する。
    """

    def get_upload_dir(self, user_id: Optional[int] = None) -> Path:
        """
        アップロードディレクトリのパスを取得する

        Args:
            user_id: 指定した場合はユーザー固有のディレクトリを返す
        """
        upload_dir = Path(settings.UPLOAD_DIR)
        if user_id is not None:
            return upload_dir / str(user_id)
        return upload_dir

    def get_audit_dir(self) -> Path:
        """LLMの生レスポンスを保存する監査ディレクトリ"""
        return Path(settings.AUDIT_DIR)

    def get_prompt_templates_dir(self) -> Optional[Path]:
        if not settings.PROMPT_TEMPLATES_DIR:
            return None
        return Path(settings.PROMPT_TEMPLATES_DIR)

    def ensure_dir(self, path: Union[str, Path]) -> Path:
        """
        ディレクトリが存在することを確認し、存在しない場合は作成する

        Args:
            path: 確認するディレクトリのパス

        Returns:
            Path: 確認したディレクトリのパス
        """
        path_obj = Path(path)
        if not path_obj.exists():
            path_obj.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Created directory: {path_obj}")
        return path_obj

    def safe_filename(self, name: str, default: str = "file") -> str:
        """ファイル名として安全な文字だけを残す"""
        cleaned = _UNSAFE_CHARS.sub("_", Path(name).name).strip("._")
        return cleaned or default


@lru_cache(maxsize=1)
def get_path_manager() -> PathManager:
    """PathManagerのシングルトンインスタンスを取得する"""
    return PathManager()


path_manager = get_path_manager()
