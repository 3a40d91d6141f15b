"""
非同期処理のタイムアウトユーティリティ

LLM呼び出しやドキュメント取得など、待ち時間が外部に依存する処理に上限を設けます。
タイムアウト値は settings の TIMEOUT_<KEY> から取得し、超過時は TimeoutException を送出します。
"""

import asyncio
import functools
from typing import Any, Awaitable, Callable, Optional, TypeVar, cast

from complitest.config import settings
from complitest.exceptions import TimeoutException
from complitest.logging_config import logger

AsyncF = TypeVar('AsyncF', bound=Callable[..., Awaitable[Any]])

DEFAULT_TIMEOUT = 30.0


def get_timeout_config(timeout_key: str, default: float = DEFAULT_TIMEOUT) -> float:
    """
    settings からタイムアウト値を取得する

    Args:
        timeout_key: LLM_CALL, DOCUMENT_FETCH などのキー
        default: 設定が無い場合の値

    Returns:
        タイムアウト値（秒）
    """
    raw = getattr(settings, f"TIMEOUT_{timeout_key.upper()}", None)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning(f"Invalid timeout value for {timeout_key}: {raw}, using default")
        return default
    return value if value > 0 else default


def async_timeout(seconds: Optional[float] = None, timeout_key: Optional[str] = None) -> Callable[[AsyncF], AsyncF]:
    """
    非同期関数にタイムアウトを付与するデコレータ

    タイムアウト値は呼び出しごとに解決するため、テスト中に settings を差し替えても反映される。

    Examples:
        >>> @async_timeout(timeout_key="LLM_CALL")
        >>> async def call_model():
        >>>     ...
    """
    def decorator(func: AsyncF) -> AsyncF:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if seconds is not None:
                timeout_value = float(seconds)
            elif timeout_key is not None:
                timeout_value = get_timeout_config(timeout_key)
            else:
                timeout_value = DEFAULT_TIMEOUT
            return await run_async_with_timeout(func(*args, **kwargs), timeout_value, name=func.__name__)

        return cast(AsyncF, wrapper)

    return decorator


async def run_async_with_timeout(awaitable: Awaitable[Any], timeout_value: float, name: str = "operation") -> Any:
    """
    awaitable を指定秒数で打ち切って実行する

    Raises:
        TimeoutException: タイムアウトが発生した場合
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_value)
    except asyncio.TimeoutError:
        raise TimeoutException(
            f"{name} timed out after {timeout_value} seconds",
            details={"function": name, "timeout": timeout_value}
        )
