import os
import json
import yaml
from typing import Any, Dict, List, Optional, TypeVar, Generic, cast
from functools import lru_cache
from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

# 型変数の定義
T = TypeVar('T')

class ConfigValue(Generic[T]):
    """設定値を表すクラス。環境変数、設定ファイル、デフォルト値の優先順位を管理する"""

    def __init__(
        self,
        default: T,
        env_var: Optional[str] = None,
        config_path: Optional[str] = None,
        description: str = ""
    ):
        self.default = default
        self.env_var = env_var
        self.config_path = config_path
        self.description = description
        self._value: Optional[T] = None
        self._is_cached = False

    def get_value(self, config_data: Optional[Dict[str, Any]] = None) -> T:
        """設定値を取得する。キャッシュがある場合はキャッシュから取得する"""
        if self._is_cached:
            return cast(T, self._value)

        # 環境変数から取得
        if self.env_var and self.env_var in os.environ:
            self._value = self._convert_value(os.environ[self.env_var])
            self._is_cached = True
            return cast(T, self._value)

        # 設定ファイルから取得（ドット記法でネストした値にアクセス）
        if config_data and self.config_path:
            try:
                value = config_data
                for path in self.config_path.split('.'):
                    value = value[path]
                self._value = self._convert_value(value)
                self._is_cached = True
                return cast(T, self._value)
            except (KeyError, TypeError):
                pass

        self._value = self.default
        self._is_cached = True
        return self.default

    def _convert_value(self, value: Any) -> T:
        """値を適切な型に変換する"""
        if isinstance(self.default, bool) and isinstance(value, str):
            return cast(T, value.lower() == "true")
        elif isinstance(self.default, int) and isinstance(value, str):
            return cast(T, int(value))
        elif isinstance(self.default, float) and isinstance(value, str):
            return cast(T, float(value))
        elif isinstance(self.default, list) and isinstance(value, str):
            return cast(T, [v.strip() for v in value.split(',') if v.strip()])
        return cast(T, value)

    def clear_cache(self) -> None:
        """キャッシュをクリアする"""
        self._is_cached = False
        self._value = None


class LLMConfig:
    """LLM設定"""
    PROVIDER = ConfigValue[str](
        default="openai",
        env_var="LLM_PROVIDER",
        config_path="llm.provider",
        description="LLMプロバイダー"
    )
    MODEL_NAME = ConfigValue[str](
        default="gpt-4o-mini",
        env_var="LLM_MODEL_NAME",
        config_path="llm.model_name",
        description="LLMモデル名"
    )
    TEMPERATURE = ConfigValue[float](
        default=0.8,
        env_var="LLM_TEMPERATURE",
        config_path="llm.temperature",
        description="生成時の温度パラメータ"
    )
    OPENAI_API_BASE = ConfigValue[str](
        default="https://api.openai.com/v1",
        env_var="OPENAI_API_BASE",
        config_path="llm.openai_api_base",
        description="OpenAI API ベースURL"
    )
    OPENAI_API_KEY = ConfigValue[str](
        default="",
        env_var="OPENAI_API_KEY",
        config_path="llm.openai_api_key",
        description="OpenAI API キー"
    )
    ANTHROPIC_API_KEY = ConfigValue[str](
        default="",
        env_var="ANTHROPIC_API_KEY",
        config_path="llm.anthropic_api_key",
        description="Anthropic API キー"
    )
    ANTHROPIC_MODEL_NAME = ConfigValue[str](
        default="claude-3-5-sonnet-latest",
        env_var="ANTHROPIC_MODEL_NAME",
        config_path="llm.anthropic_model_name",
        description="Anthropicモデル名"
    )
    ATTACH_MEDIA = ConfigValue[bool](
        default=False,
        env_var="LLM_ATTACH_MEDIA",
        config_path="llm.attach_media",
        description="ドキュメントのファイルURIをメディア参照としてプロンプトに添付するか"
    )


class JiraConfig:
    """Jira連携設定"""
    BASE_URL = ConfigValue[str](default="", env_var="JIRA_BASE_URL", config_path="jira.base_url")
    USERNAME = ConfigValue[str](default="", env_var="JIRA_USERNAME", config_path="jira.username")
    API_TOKEN = ConfigValue[str](default="", env_var="JIRA_API_TOKEN", config_path="jira.api_token")
    PROJECT_KEY = ConfigValue[str](default="", env_var="JIRA_PROJECT_KEY", config_path="jira.project_key")
    PARENT_ISSUE_TYPE = ConfigValue[str](
        default="Task",
        env_var="JIRA_PARENT_ISSUE_TYPE",
        config_path="jira.parent_issue_type",
        description="生成セットを表す親課題の課題タイプ"
    )
    SUBTASK_ISSUE_TYPE = ConfigValue[str](
        default="Subtask",
        env_var="JIRA_SUBTASK_ISSUE_TYPE",
        config_path="jira.subtask_issue_type",
        description="テストケースを表すサブタスクの課題タイプ"
    )


class Config:
    """設定クラス"""
    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file
        self.config_data: Dict[str, Any] = {}
        self._load_config_file()

        # 設定カテゴリの初期化
        self.llm = LLMConfig()
        self.jira = JiraConfig()

    def _categories(self) -> List[tuple]:
        return [
            ('llm', self.llm),
            ('jira', self.jira),
        ]

    def _load_config_file(self) -> None:
        """設定ファイルを読み込む"""
        if not self.config_file:
            self.config_file = os.environ.get("CONFIG_FILE", "config.yaml")

        if os.path.exists(self.config_file):
            try:
                with open(self.config_file, 'r') as f:
                    if self.config_file.endswith(('.yaml', '.yml')):
                        self.config_data = yaml.safe_load(f) or {}
                    elif self.config_file.endswith('.json'):
                        self.config_data = json.load(f)
            except (OSError, ValueError, yaml.YAMLError) as e:
                print(f"設定ファイルの読み込みに失敗しました: {e}")

    def get(self, value: ConfigValue) -> Any:
        """設定ファイルの内容を考慮して設定値を取得する"""
        return value.get_value(self.config_data)

    def reload(self) -> None:
        """設定を再読み込みする"""
        self._load_config_file()
        self.clear_cache()

    def clear_cache(self) -> None:
        """すべての設定値のキャッシュをクリアする"""
        for _, category in self._categories():
            for attr_name in dir(category):
                if not attr_name.startswith('_'):
                    attr = getattr(category, attr_name)
                    if isinstance(attr, ConfigValue):
                        attr.clear_cache()

    def to_dict(self) -> Dict[str, Any]:
        """すべての設定値を辞書形式で取得する"""
        result = {}
        for category_name, category in self._categories():
            category_dict = {}
            for attr_name in dir(category):
                if not attr_name.startswith('_'):
                    attr = getattr(category, attr_name)
                    if isinstance(attr, ConfigValue):
                        category_dict[attr_name.lower()] = attr.get_value(self.config_data)
            result[category_name] = category_dict
        return result


class Settings(BaseSettings):
    # アプリケーション設定
    APP_NAME: str = "Complitest"
    DEBUG: bool = False
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # データベース設定
    DATABASE_URL: str = "sqlite:///./complitest.db"

    # データパス設定
    UPLOAD_DIR: str = "./data/uploads"
    AUDIT_DIR: str = "./data/ai_responses"
    PROMPT_TEMPLATES_DIR: Optional[str] = None

    # メディアストア設定（未設定の場合はローカル保存）
    MEDIA_STORE_URL: Optional[str] = None
    MEDIA_STORE_API_KEY: Optional[str] = None

    # テキスト抽出設定
    EXTRACT_MAX_BYTES: int = 20 * 1024 * 1024
    EXTRACT_MAX_CHARS: int = 30000

    # タイムアウト設定（秒）
    TIMEOUT_LLM_CALL: float = 120.0
    TIMEOUT_DOCUMENT_FETCH: float = 20.0
    TIMEOUT_HTTP_REQUEST: float = 30.0

    # 認証設定
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_TOKENINFO_URL: str = "https://oauth2.googleapis.com/tokeninfo"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache()
def get_config() -> Config:
    """設定のシングルトンインスタンスを取得する"""
    return Config()


settings = Settings()

config = get_config()
