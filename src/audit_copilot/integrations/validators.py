"""
工具参数的 JSON Schema 校验
"""
from typing import Dict, Any, List
import json
from jsonschema import Draft7Validator
import logging


logger = logging.getLogger(__name__)


class SchemaValidator:
    """工具参数的 JSON Schema 验证器"""

    def __init__(self):
        self._cache: Dict[str, Draft7Validator] = {}

    def validate(self, data: Dict[str, Any], schema: Dict[str, Any]) -> List[str]:
        """
        验证数据是否符合schema定义

        Args:
            data: 待验证的数据
            schema: JSON Schema定义

        Returns:
            验证错误列表，如果没有错误返回空列表
        """
        if not schema:
            return []

        # 按 schema 内容缓存
        schema_str = json.dumps(schema, sort_keys=True)
        validator = self._cache.get(schema_str)
        if validator is None:
            try:
                Draft7Validator.check_schema(schema)
            except Exception as e:
                logger.error(f"Invalid tool schema: {e}")
                return [f"Invalid schema: {str(e)}"]
            validator = Draft7Validator(schema)
            self._cache[schema_str] = validator

        # 收集所有验证错误
        errors = []
        for error in validator.iter_errors(data):
            path = ".".join(str(p) for p in error.absolute_path) if error.absolute_path else "root"
            errors.append(f"{path}: {error.message}")

        return errors
