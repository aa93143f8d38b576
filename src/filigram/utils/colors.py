"""颜色工具函数。"""

from __future__ import annotations

import re
from typing import Tuple

from filigram.core.exceptions import InvalidConfigurationError

HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def parse_hex_color(value: str) -> Tuple[int, int, int]:
    """将 HEX 字符串（#RGB 或 #RRGGBB）解析为 RGB 三元组。"""

    if not value:
        raise InvalidConfigurationError("颜色值不能为空")

    match = HEX_COLOR_RE.match(value.strip())
    if not match:
        raise InvalidConfigurationError(f"无法解析颜色值: {value}")

    hex_value = match.group(1)
    if len(hex_value) == 3:
        hex_value = "".join(ch * 2 for ch in hex_value)

    return tuple(int(hex_value[i : i + 2], 16) for i in (0, 2, 4))  # type: ignore[return-value]


def with_opacity(rgb: Tuple[int, int, int], opacity: float) -> Tuple[int, int, int, int]:
    """为 RGB 颜色附加 0.0~1.0 的透明度，返回 RGBA。"""

    if not 0.0 <= opacity <= 1.0:
        raise InvalidConfigurationError(f"透明度必须位于 0~1 之间: {opacity}")
    return (*rgb, int(round(opacity * 255)))
