"""
LLMクライアントの抽象化モジュール

このモジュールは、異なるLLMプロバイダーに対して統一的な非同期インターフェースを提供します。
呼び出しにはタイムアウトを設けますが、自動的な再送は行いません。
応答が利用できない場合の再試行は、より厳しい指示で内容を組み直す ResponseRecoveryEngine の責務です。
"""

import abc
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from complitest.config import config
from complitest.exceptions import (
    ComplitestException,
    ConfigurationException,
    ModelCallException,
)
from complitest.logging_config import logger
from complitest.utils.timeout import async_timeout


class LLMProviderType(Enum):
    """LLMプロバイダーの種類"""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    LOCAL = "local"


class MessageRole(Enum):
    """メッセージの役割"""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ContentBlock:
    """
    プロンプトを構成するブロック

    kind が "text" の場合は text を、"media" の場合は uri と mime_type を使う。
    """
    kind: str
    text: str = ""
    uri: str = ""
    mime_type: str = ""

    @classmethod
    def of_text(cls, text: str) -> "ContentBlock":
        return cls(kind="text", text=text)

    @classmethod
    def of_media(cls, uri: str, mime_type: str = "application/pdf") -> "ContentBlock":
        return cls(kind="media", uri=uri, mime_type=mime_type)

    def to_langchain(self) -> Dict[str, Any]:
        """LangChainのコンテンツパート形式に変換する"""
        if self.kind == "media":
            return {
                "type": "file",
                "source_type": "url",
                "url": self.uri,
                "mime_type": self.mime_type,
            }
        return {"type": "text", "text": self.text}


MessageContent = Union[str, List[ContentBlock]]


class Message:
    """LLMに送信するメッセージ"""
    def __init__(self, role: MessageRole, content: MessageContent):
        self.role = role
        self.content = content

    def to_langchain(self) -> BaseMessage:
        if isinstance(self.content, str):
            content: Any = self.content
        else:
            content = [block.to_langchain() for block in self.content]

        if self.role == MessageRole.SYSTEM:
            return SystemMessage(content=content)
        if self.role == MessageRole.ASSISTANT:
            return AIMessage(content=content)
        return HumanMessage(content=content)


def flatten_response_content(content: Any) -> str:
    """
    LangChainのレスポンス内容を文字列にする

    プロバイダーによっては content がパートのリストで返るため、テキスト部分だけを連結する。
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                parts.append(part["text"])
        return "".join(parts)
    return "" if content is None else str(content)


class LLMClient(abc.ABC):
    """LLMクライアントの抽象基底クラス"""

    def __init__(
        self,
        model_name: str,
        temperature: float = 0.0,
        max_tokens: Optional[int] = None,
        **kwargs
    ):
        """
        LLMクライアントの初期化

        Args:
            model_name: モデル名
            temperature: 温度パラメータ
            max_tokens: 最大トークン数
            **kwargs: プロバイダー固有のパラメータ（api_key, api_base など）
        """
        self.model_name = model_name
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.extra_params = kwargs

        self._setup_client()

    @abc.abstractmethod
    def _setup_client(self) -> None:
        """クライアントの設定（サブクラスで実装）"""

    async def _acall_llm(self, messages: List[Message]) -> str:
        response = await self.client.ainvoke([message.to_langchain() for message in messages])
        return flatten_response_content(response.content)

    @async_timeout(timeout_key="LLM_CALL")
    async def acall(self, messages: List[Message]) -> str:
        """
        LLMを非同期で呼び出す（タイムアウト付き）

        Args:
            messages: メッセージのリスト

        Returns:
            LLMからの生のテキスト
        """
        try:
            logger.info(f"Calling LLM {self.model_name} with {len(messages)} messages")
            response = await self._acall_llm(messages)
            logger.debug(f"LLM response received: {response[:100]}...")
            return response
        except ComplitestException:
            raise
        except Exception as e:
            logger.error(f"Error calling LLM: {e}", exc_info=True)
            raise ModelCallException(f"LLM呼び出し中にエラーが発生しました: {e}", details={
                "model": self.model_name,
                "error": str(e)
            })


class OpenAIClient(LLMClient):
    """OpenAI互換APIを使用するLLMクライアント"""

    def _setup_client(self) -> None:
        params = dict(self.extra_params)
        api_base = params.pop("api_base", None) or config.get(config.llm.OPENAI_API_BASE)
        api_key = params.pop("api_key", None) or config.get(config.llm.OPENAI_API_KEY)
        require_key = params.pop("require_key", True)
        if not api_key:
            if require_key:
                raise ConfigurationException("OpenAI APIキーが設定されていません", details={"env": "OPENAI_API_KEY"})
            # ローカルのOpenAI互換サーバーはキーを検証しない
            api_key = "not-needed"

        self.client = ChatOpenAI(
            model=self.model_name,
            base_url=api_base,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            api_key=api_key,
            max_retries=0,
            **params
        )


class AnthropicClient(LLMClient):
    """Anthropic APIを使用するLLMクライアント"""

    def _setup_client(self) -> None:
        params = dict(self.extra_params)
        api_key = params.pop("api_key", None) or config.get(config.llm.ANTHROPIC_API_KEY)
        if not api_key:
            raise ConfigurationException("Anthropic APIキーが設定されていません", details={"env": "ANTHROPIC_API_KEY"})

        self.client = ChatAnthropic(
            model=self.model_name,
            temperature=self.temperature,
            max_tokens=self.max_tokens or 4096,
            api_key=api_key,
            max_retries=0,
            **params
        )


class LLMClientFactory:
    """LLMクライアントのファクトリークラス"""

    @staticmethod
    def create(
        provider_type: LLMProviderType,
        model_name: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs
    ) -> LLMClient:
        """
        LLMクライアントを作成する

        Args:
            provider_type: LLMプロバイダーの種類
            model_name: モデル名（指定しない場合は設定から取得）
            temperature: 温度パラメータ（指定しない場合は設定から取得）
            max_tokens: 最大トークン数
            **kwargs: その他のパラメータ

        Returns:
            LLMクライアント
        """
        if temperature is None:
            temperature = config.get(config.llm.TEMPERATURE)

        if provider_type == LLMProviderType.OPENAI:
            model = model_name or config.get(config.llm.MODEL_NAME)
            return OpenAIClient(model, temperature, max_tokens, **kwargs)
        elif provider_type == LLMProviderType.ANTHROPIC:
            model = model_name or config.get(config.llm.ANTHROPIC_MODEL_NAME)
            return AnthropicClient(model, temperature, max_tokens, **kwargs)
        elif provider_type == LLMProviderType.LOCAL:
            model = model_name or config.get(config.llm.MODEL_NAME)
            kwargs.setdefault("require_key", False)
            return OpenAIClient(model, temperature, max_tokens, **kwargs)
        raise ConfigurationException(f"Unsupported LLM provider type: {provider_type}")

    @staticmethod
    def create_default() -> LLMClient:
        """
        デフォルト設定でLLMクライアントを作成する

        Returns:
            LLMクライアント
        """
        provider_value = (config.get(config.llm.PROVIDER) or "openai").lower()
        try:
            provider_type = LLMProviderType(provider_value)
        except ValueError:
            raise ConfigurationException(f"Unknown LLM provider: {provider_value}", details={"env": "LLM_PROVIDER"})
        return LLMClientFactory.create(provider_type)
