# trans_relay/utils.py
"""本模块包含项目范围内的通用工具函数。"""

import hashlib
import re

from langcodes import Language
from langcodes.tag_parser import LanguageTagError

# 语言子标签应该由 2-3 个字母组成 (BCP 47)
LANGUAGE_SUBTAG_PATTERN = re.compile(r"^[a-zA-Z]{2,3}$")

# 表示“由后端自动检测源语言”的占位代码
AUTO_LANG = "auto"


def validate_lang_codes(lang_codes: list[str]) -> None:
    """使用 `langcodes` 库校验配置中的语言代码，`auto` 视为合法。"""
    for code in lang_codes:
        if code == AUTO_LANG:
            continue
        try:
            lang = Language.get(code)
            if not lang.language or not LANGUAGE_SUBTAG_PATTERN.match(lang.language):
                raise LanguageTagError(
                    f"Tag '{code}' lacks a valid 2-3 letter language subtag."
                )
        except LanguageTagError as e:
            raise ValueError(f"提供的语言代码 '{code}' 格式无效。原因: {e}") from e


def text_fingerprint(text: str) -> str:
    """返回文本的 sha256 十六进制摘要。"""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
