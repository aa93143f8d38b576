"""文件分类规则：判断文件是加水印还是原样复制。"""

from __future__ import annotations

import logging
from fnmatch import fnmatch
from pathlib import PurePath, PurePosixPath
from typing import Sequence, Union

from filigram.core.config import ClassificationRules
from filigram.core.models import Classification

LOGGER = logging.getLogger(__name__)

GLOB_CHARS = frozenset("*?[")


def _normalize_extensions(extensions: Sequence[str]) -> frozenset[str]:
    return frozenset(ext.lower().lstrip(".") for ext in extensions if ext.strip("."))


def _matches_pattern(posix_path: str, name: str, pattern: str) -> bool:
    lowered = pattern.lower()
    if GLOB_CHARS.intersection(lowered):
        return fnmatch(posix_path, lowered) or fnmatch(name, lowered)
    return lowered in posix_path


class Classifier:
    """基于 ClassificationRules 的纯函数式分类器。

    输入为相对于源目录的路径；分类结果只取决于路径本身。
    """

    def __init__(self, rules: ClassificationRules) -> None:
        self.rules = rules
        self._extensions = _normalize_extensions(rules.include_extensions)
        self._excluded_dirs = frozenset(rules.excluded_dirs)

    def classify(self, relative_path: Union[str, PurePath]) -> Classification:
        try:
            path = PurePosixPath(PurePath(relative_path).as_posix())
        except TypeError:
            LOGGER.debug("无法解析路径，按原样复制处理: %r", relative_path)
            return Classification.EXCLUDED

        reason = self._exclusion_reason(path)
        if reason:
            LOGGER.debug("排除 %s (%s)", path, reason)
            return Classification.EXCLUDED

        extension = path.suffix.lower().lstrip(".")
        if not extension:
            LOGGER.debug("排除 %s (无扩展名)", path)
            return Classification.EXCLUDED
        if extension not in self._extensions:
            LOGGER.debug("排除 %s (扩展名不在列表中)", path)
            return Classification.EXCLUDED

        return Classification.WATERMARKABLE

    def is_watermarkable(self, relative_path: Union[str, PurePath]) -> bool:
        return self.classify(relative_path) is Classification.WATERMARKABLE

    def _exclusion_reason(self, path: PurePosixPath) -> str:
        if self._excluded_dirs and any(part in self._excluded_dirs for part in path.parent.parts):
            return "目录被排除"

        name = path.name
        if any(name.startswith(prefix) for prefix in self.rules.excluded_file_prefixes if prefix):
            return "文件名前缀被排除"

        posix_path = path.as_posix().lower()
        lowered_name = name.lower()
        for pattern in self.rules.exclude_patterns:
            if pattern and _matches_pattern(posix_path, lowered_name, pattern):
                return f"匹配排除规则 {pattern}"

        return ""
