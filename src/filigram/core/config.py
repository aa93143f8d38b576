"""处理任务的配置模型。

所有配置对象均为不可变 dataclass，可以安全地在多个工作进程之间共享。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from filigram.core.exceptions import InvalidConfigurationError
from filigram.utils.colors import parse_hex_color

CANVAS_SIZE: Tuple[int, int] = (500, 500)

VALID_PLACEMENTS = {
    "diagonal",
    "center",
    "top-left",
    "top-right",
    "bottom-left",
    "bottom-right",
    "tiled",
}
VALID_FIT_MODES = {"stretch", "cover", "contain"}

DEFAULT_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png", "bmp", "gif", "webp")


@dataclass(frozen=True, slots=True)
class WatermarkSpec:
    """水印内容与位置配置。"""

    text: str = "© Copyright Filigram"
    color: str = "#000000"
    opacity: float = 0.43
    font_path: Optional[Path] = None
    font_size: int = 64
    angle: float = 45.0
    placement: str = "diagonal"  # 见 VALID_PLACEMENTS
    margin: int = 20
    graphic_path: Optional[Path] = None
    graphic_scale: float = 0.3
    canvas_size: Tuple[int, int] = CANVAS_SIZE
    fit_mode: str = "stretch"  # stretch | cover | contain
    background_color: str = "#000000"

    def validate(self) -> None:
        """检查配置取值，不合法时抛出 InvalidConfigurationError。"""

        if not self.text and self.graphic_path is None:
            raise InvalidConfigurationError("水印文本与水印图片不能同时为空")
        if self.placement not in VALID_PLACEMENTS:
            raise InvalidConfigurationError(f"未知的水印位置: {self.placement}")
        if self.fit_mode not in VALID_FIT_MODES:
            raise InvalidConfigurationError(f"未知的尺寸模式: {self.fit_mode}")
        if not 0.0 <= self.opacity <= 1.0:
            raise InvalidConfigurationError("opacity 必须位于 0~1 之间")
        if self.font_size <= 0:
            raise InvalidConfigurationError("font_size 必须大于 0")
        if self.margin < 0:
            raise InvalidConfigurationError("margin 不能为负数")
        if not 0.0 < self.graphic_scale <= 1.0:
            raise InvalidConfigurationError("graphic_scale 必须位于 (0, 1] 区间")
        width, height = self.canvas_size
        if width <= 0 or height <= 0:
            raise InvalidConfigurationError("canvas_size 必须大于 0")
        parse_hex_color(self.color)
        parse_hex_color(self.background_color)


@dataclass(frozen=True, slots=True)
class ClassificationRules:
    """决定哪些文件需要加水印、哪些原样复制。

    排除规则优先于扩展名规则：
    - excluded_dirs: 相对路径中任意一级目录名与之相同即排除，例如 ".hidden"；
    - excluded_file_prefixes: 文件名以其开头即排除，例如 "background"；
    - exclude_patterns: 含通配符时按 fnmatch 匹配相对路径或文件名，否则按子串匹配相对路径。
    """

    include_extensions: Tuple[str, ...] = DEFAULT_IMAGE_EXTENSIONS
    exclude_patterns: Tuple[str, ...] = ()
    excluded_dirs: Tuple[str, ...] = ()
    excluded_file_prefixes: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class JobConfig:
    """单次批处理任务的配置集合。"""

    source_root: Path
    destination_root: Path
    watermark: WatermarkSpec = field(default_factory=WatermarkSpec)
    rules: ClassificationRules = field(default_factory=ClassificationRules)
    max_workers: Optional[int] = None  # None 表示使用 CPU 核心数
    preserve_metadata: bool = True
    report_path: Optional[Path] = None
