"""
Complitestアプリケーションの例外クラス階層

このモジュールは、アプリケーション全体で使用される例外クラスの階層を定義します。
各例外クラスには適切なエラーコードが割り当てられ、HTTPステータスへの対応付けは
http_status_for() に一元化されています。
"""
from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(Enum):
    """エラーコード定義"""
    # 一般的なエラー (1000-1999)
    GENERAL_ERROR = 1000
    CONFIGURATION_ERROR = 1001
    TIMEOUT_ERROR = 1002
    AUTHENTICATION_ERROR = 1003

    # LLM関連エラー (2000-2999)
    LLM_ERROR = 2000
    PROMPT_ERROR = 2001
    MODEL_CALL_ERROR = 2002
    RESPONSE_RECOVERY_ERROR = 2003

    # ドキュメント関連エラー (3000-3999)
    DOCUMENT_ERROR = 3000
    EXTRACTION_ERROR = 3001
    MEDIA_STORE_ERROR = 3002

    # 外部連携エラー (4000-4999)
    INTEGRATION_ERROR = 4000

    # データ処理関連エラー (5000-5999)
    DATA_ERROR = 5000
    DATABASE_ERROR = 5001
    VALIDATION_ERROR = 5002
    NOT_FOUND_ERROR = 5003


class ComplitestException(Exception):
    """Complitestの基底例外クラス"""
    def __init__(
        self,
        message: str = "Complitestアプリケーションエラーが発生しました",
        error_code: ErrorCode = ErrorCode.GENERAL_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.error_code.name}:{self.error_code.value}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """例外情報を辞書形式で返す"""
        return {
            "error_code": self.error_code.value,
            "error_name": self.error_code.name,
            "message": self.message,
            "details": self.details
        }


class ConfigurationException(ComplitestException):
    """設定エラー（認証情報の欠落など）"""
    def __init__(
        self,
        message: str = "設定の読み込みまたは検証に失敗しました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.CONFIGURATION_ERROR, details)


class TimeoutException(ComplitestException):
    """タイムアウトエラー"""
    def __init__(
        self,
        message: str = "処理がタイムアウトしました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.TIMEOUT_ERROR, details)


class AuthenticationException(ComplitestException):
    """認証エラー"""
    def __init__(
        self,
        message: str = "認証に失敗しました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.AUTHENTICATION_ERROR, details)


# LLM関連の例外クラス
class LLMException(ComplitestException):
    """LLM関連の基底例外クラス"""
    def __init__(
        self,
        message: str = "LLM処理中にエラーが発生しました",
        error_code: ErrorCode = ErrorCode.LLM_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class PromptException(LLMException):
    """プロンプト関連のエラー"""
    def __init__(
        self,
        message: str = "プロンプトの処理に失敗しました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.PROMPT_ERROR, details)


class ModelCallException(LLMException):
    """モデル呼び出しエラー"""
    def __init__(
        self,
        message: str = "LLMモデルの呼び出しに失敗しました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.MODEL_CALL_ERROR, details)


class ResponseRecoveryException(LLMException):
    """再試行後もLLMレスポンスから有効なJSONを復元できなかった場合のエラー"""
    def __init__(
        self,
        message: str = "LLMレスポンスから有効なJSONを取得できませんでした",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.RESPONSE_RECOVERY_ERROR, details)


# ドキュメント関連の例外クラス
class DocumentException(ComplitestException):
    """ドキュメント関連の基底例外クラス"""
    def __init__(
        self,
        message: str = "ドキュメント処理中にエラーが発生しました",
        error_code: ErrorCode = ErrorCode.DOCUMENT_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class ExtractionException(DocumentException):
    """テキスト抽出エラー"""
    def __init__(
        self,
        message: str = "ドキュメントからのテキスト抽出に失敗しました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.EXTRACTION_ERROR, details)


class MediaStoreException(DocumentException):
    """メディアストアへのアップロードエラー"""
    def __init__(
        self,
        message: str = "メディアストアへのアップロードに失敗しました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.MEDIA_STORE_ERROR, details)


class IntegrationException(ComplitestException):
    """課題管理システム連携エラー"""
    def __init__(
        self,
        message: str = "外部サービスとの連携に失敗しました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.INTEGRATION_ERROR, details)


# データ処理関連の例外クラス
class DataException(ComplitestException):
    """データ関連の基底例外クラス"""
    def __init__(
        self,
        message: str = "データ処理中にエラーが発生しました",
        error_code: ErrorCode = ErrorCode.DATA_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, error_code, details)


class DatabaseException(DataException):
    """データベースエラー"""
    def __init__(
        self,
        message: str = "データベース操作に失敗しました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.DATABASE_ERROR, details)


class ValidationException(DataException):
    """入力データの検証エラー"""
    def __init__(
        self,
        message: str = "入力データの検証に失敗しました",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details)


class NotFoundException(DataException):
    """対象リソースが存在しない"""
    def __init__(
        self,
        message: str = "指定されたリソースが見つかりません",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, ErrorCode.NOT_FOUND_ERROR, details)


_HTTP_STATUS_BY_CODE = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.AUTHENTICATION_ERROR: 401,
    ErrorCode.NOT_FOUND_ERROR: 404,
    ErrorCode.MODEL_CALL_ERROR: 502,
    ErrorCode.RESPONSE_RECOVERY_ERROR: 502,
    ErrorCode.TIMEOUT_ERROR: 504,
}


def http_status_for(exception: ComplitestException) -> int:
    """
    例外に対応するHTTPステータスコードを返す

    Args:
        exception: 変換する例外

    Returns:
        HTTPステータスコード（未定義のものは500）
    """
    return _HTTP_STATUS_BY_CODE.get(exception.error_code, 500)


def exception_to_response(exception: ComplitestException) -> Dict[str, Any]:
    """
    例外をAPIレスポンス形式に変換する

    Args:
        exception: 変換する例外

    Returns:
        APIレスポンス形式の辞書
    """
    response: Dict[str, Any] = {
        "success": False,
        "error": exception.message,
    }
    if exception.details:
        response["details"] = exception.details
    return response
