"""
プロンプトテンプレート管理モジュール

このモジュールは、テストケース生成・再生成・標準ドキュメント要約で使用される
プロンプトテンプレートを集約し、再利用可能な形で管理します。
PROMPT_TEMPLATES_DIR を設定すると、同名のテンプレートをファイルで上書きできます。
"""

from typing import Dict, Any, Optional
import json
import yaml
from pathlib import Path

from complitest.exceptions import PromptException
from complitest.logging_config import logger
from complitest.utils.path_manager import path_manager

TEMPLATE_FILE_SUFFIXES = (".yaml", ".yml", ".json")


class PromptTemplate:
    """プロンプトテンプレートクラス"""

    def __init__(self, template: str, metadata: Optional[Dict[str, Any]] = None):
        """
        プロンプトテンプレートの初期化

        Args:
            template: テンプレート文字列
            metadata: テンプレートに関するメタデータ
        """
        self.template = template
        self.metadata = metadata or {}

    def format(self, **kwargs) -> str:
        """
        テンプレートを変数で埋める

        Raises:
            PromptException: 必要な変数が不足している場合
        """
        try:
            return self.template.format(**kwargs)
        except (KeyError, IndexError, ValueError) as e:
            raise PromptException(f"テンプレート変数が不足しています: {e}", details={"missing": str(e)})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template": self.template,
            "metadata": self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PromptTemplate':
        return cls(
            template=data["template"],
            metadata=data.get("metadata", {})
        )


class PromptTemplateRegistry:
    """プロンプトテンプレートレジストリ"""

    def __init__(self):
        self._templates: Dict[str, PromptTemplate] = {}
        self._loaded = False

    def register(self, name: str, template: PromptTemplate) -> None:
        self._templates[name] = template

    def get(self, name: str) -> PromptTemplate:
        """
        テンプレートを取得

        Raises:
            PromptException: テンプレートが見つからない場合
        """
        if not self._loaded:
            self.load_default_templates()

        if name not in self._templates:
            raise PromptException(f"Template not found: {name}", details={"template": name})

        return self._templates[name]

    def load_from_file(self, path: Path) -> None:
        """
        ファイルからテンプレートを読み込む

        Args:
            path: .yaml / .yml / .json のテンプレートファイル
        """
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix in (".yaml", ".yml"):
                templates_data = yaml.safe_load(f) or {}
            else:
                templates_data = json.load(f)

        for name, data in templates_data.items():
            if isinstance(data, str):
                self.register(name, PromptTemplate(data))
            elif isinstance(data, dict) and "template" in data:
                self.register(name, PromptTemplate.from_dict(data))
            else:
                logger.warning(f"Invalid template data for {name} in {path}")

    def load_from_directory(self, directory: Path) -> None:
        """ディレクトリ直下のテンプレートファイルをすべて読み込む"""
        for file_path in sorted(directory.iterdir()):
            if file_path.suffix in TEMPLATE_FILE_SUFFIXES:
                self.load_from_file(file_path)

    def load_default_templates(self) -> None:
        """デフォルトのテンプレートを読み込む"""
        self._loaded = True

        self.register("testcase_generation", PromptTemplate(
            template="""You are a senior QA engineer specialising in regulatory compliance.
Read the requirement document and the compliance standards provided below and design test cases
that verify the requirement while demonstrating conformance to the standards.

Each test case must be a JSON object with exactly these keys:
- "tc_id": a short unique identifier such as "TC-001"
- "req_id": the requirement id ({req_id})
- "title": a concise title
- "preconditions": array of strings
- "steps": array of strings, one action per element
- "expected": the expected result as a single string
- "automatable": true or false
- "suggested_tool": the tool best suited to run it (use "manual" if it cannot be automated)
- "confidence": a number between 0 and 1
- "compliance": array of clause references from the standards that this test case covers

Cover positive, negative and boundary behaviour. Prefer fewer, well-specified test cases over many vague ones.""",
            metadata={
                "description": "要求仕様と標準からテストケース配列を生成するプロンプト",
                "version": "1.0",
                "shape": "array"
            }
        ))

        self.register("testcase_regeneration", PromptTemplate(
            template="""You are a senior QA engineer specialising in regulatory compliance.
You previously generated the test case set shown below for requirement {req_id}.
Rewrite ONLY the target test case {tc_id} so that it is clearer, more complete and traceable to the standards.
Keep the same intent and keep "tc_id" as "{tc_id}".

Return a single JSON object with the keys "tc_id", "req_id", "title", "preconditions", "steps",
"expected", "automatable", "suggested_tool", "confidence" and "compliance".""",
            metadata={
                "description": "生成済みセットの1件だけを再生成するプロンプト",
                "version": "1.0",
                "shape": "object"
            }
        ))

        self.register("standards_summary", PromptTemplate(
            template="""{prompt}

Summarise the compliance standards below for a test engineer. Focus on obligations that can be verified by testing.""",
            metadata={
                "description": "選択した標準ドキュメントの要約プロンプト",
                "version": "1.0",
                "shape": "text"
            }
        ))

        templates_dir = path_manager.get_prompt_templates_dir()
        if templates_dir and templates_dir.is_dir():
            try:
                self.load_from_directory(templates_dir)
            except (OSError, ValueError, yaml.YAMLError) as e:
                logger.error(f"Error loading templates from {templates_dir}: {e}", exc_info=True)


prompt_registry = PromptTemplateRegistry()


def get_prompt_template(name: str) -> PromptTemplate:
    """
    プロンプトテンプレートを取得する

    Args:
        name: テンプレート名

    Returns:
        プロンプトテンプレート
    """
    return prompt_registry.get(name)
