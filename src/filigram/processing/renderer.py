"""水印渲染：把图片缩放到固定画布并叠加水印图层。

渲染过程不写磁盘，同样的输入图片与 WatermarkSpec 总是得到同样的像素。
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

import numpy as np
from PIL import Image, ImageDraw, ImageFont, ImageOps

from filigram.core.config import WatermarkSpec
from filigram.core.exceptions import InvalidConfigurationError, InvalidGeometry, RenderError
from filigram.utils.colors import parse_hex_color, with_opacity

LOGGER = logging.getLogger(__name__)

TILE_SPACING = 1.5
TEXT_PADDING = 4


def render(image: Image.Image, spec: WatermarkSpec, layer: Optional[Image.Image] = None) -> Image.Image:
    """返回缩放到 spec.canvas_size 并叠加水印后的新 RGB 图片。"""

    width, height = image.size
    if width <= 0 or height <= 0:
        raise InvalidGeometry(f"图片尺寸无效: {width}x{height}")

    if layer is None:
        layer = build_watermark_layer(spec)

    try:
        resized = fit_to_canvas(image, spec)
        composed = Image.alpha_composite(resized.convert("RGBA"), layer)
        return composed.convert("RGB")
    except (ValueError, OSError) as exc:
        raise RenderError(f"水印合成失败: {exc}") from exc


def fit_to_canvas(image: Image.Image, spec: WatermarkSpec) -> Image.Image:
    """按 fit_mode 把图片调整为恰好 canvas_size 大小。

    - stretch: 直接拉伸，不保持宽高比；
    - cover: 保持宽高比放大后居中裁剪；
    - contain: 保持宽高比缩放，空白处用 background_color 填充。
    """

    target_size = tuple(spec.canvas_size)
    if spec.fit_mode == "stretch":
        return image.resize(target_size, Image.LANCZOS)
    if spec.fit_mode == "cover":
        return ImageOps.fit(image, target_size, Image.LANCZOS, centering=(0.5, 0.5))
    if spec.fit_mode == "contain":
        return _apply_contain(image, target_size, spec.background_color)
    raise InvalidConfigurationError(f"未知的尺寸模式: {spec.fit_mode}")


def _apply_contain(image: Image.Image, target_size: tuple[int, int], background: str) -> Image.Image:
    """使用 contain 模式适配尺寸。"""

    canvas = Image.new("RGB", target_size, parse_hex_color(background))
    resized = ImageOps.contain(image, target_size, Image.LANCZOS)
    offset = (
        (target_size[0] - resized.width) // 2,
        (target_size[1] - resized.height) // 2,
    )
    canvas.paste(resized, offset)
    return canvas


@lru_cache(maxsize=8)
def build_watermark_layer(spec: WatermarkSpec) -> Image.Image:
    """生成与画布同尺寸的透明 RGBA 水印图层。

    结果按 spec 缓存，每个工作进程只生成一次；调用方不得修改返回的图层。
    """

    spec.validate()
    size = tuple(spec.canvas_size)
    layer = Image.new("RGBA", size, (0, 0, 0, 0))

    if spec.graphic_path is not None:
        graphic = _load_graphic(spec.graphic_path, int(size[0] * spec.graphic_scale))
        layer = _composite_at(layer, graphic, spec.placement, spec.margin)

    if spec.text:
        font = _load_font(spec.font_path, spec.font_size)
        angle = spec.angle if spec.placement in {"diagonal", "tiled"} else 0.0
        tile = _create_text_tile(spec.text, font, parse_hex_color(spec.color), angle)
        layer = _composite_at(layer, tile, spec.placement, spec.margin)

    LOGGER.debug("水印图层已生成：placement=%s, opacity=%.2f", spec.placement, spec.opacity)
    return _scale_alpha(layer, spec.opacity)


def _load_font(font_path: Optional[Path], size: int) -> ImageFont.ImageFont | ImageFont.FreeTypeFont:
    if font_path is not None:
        try:
            return ImageFont.truetype(str(font_path), size)
        except OSError as exc:
            raise InvalidConfigurationError(f"无法加载字体 {font_path}: {exc}") from exc
    return ImageFont.load_default(size=size)


def _load_graphic(path: Path, max_width: int) -> Image.Image:
    try:
        with Image.open(path) as img:
            graphic = img.convert("RGBA")
    except OSError as exc:
        raise InvalidConfigurationError(f"无法加载水印图片 {path}: {exc}") from exc

    max_width = max(1, max_width)
    return ImageOps.contain(graphic, (max_width, max_width), Image.LANCZOS)


def _create_text_tile(text: str, font, rgb: tuple[int, int, int], angle: float) -> Image.Image:
    """绘制单个文字块，旋转时扩展画布避免裁切。"""

    probe = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    left, top, right, bottom = probe.textbbox((0, 0), text, font=font)
    width = max(1, right - left) + TEXT_PADDING * 2
    height = max(1, bottom - top) + TEXT_PADDING * 2

    tile = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(tile)
    draw.text((TEXT_PADDING - left, TEXT_PADDING - top), text, font=font, fill=with_opacity(rgb, 1.0))

    if angle:
        tile = tile.rotate(angle, resample=Image.BICUBIC, expand=True)
    return tile


def _anchor_positions(placement: str, canvas: tuple[int, int], tile: tuple[int, int], margin: int) -> list[tuple[int, int]]:
    canvas_w, canvas_h = canvas
    tile_w, tile_h = tile

    if placement in {"diagonal", "center"}:
        return [((canvas_w - tile_w) // 2, (canvas_h - tile_h) // 2)]
    if placement == "top-left":
        return [(margin, margin)]
    if placement == "top-right":
        return [(canvas_w - tile_w - margin, margin)]
    if placement == "bottom-left":
        return [(margin, canvas_h - tile_h - margin)]
    if placement == "bottom-right":
        return [(canvas_w - tile_w - margin, canvas_h - tile_h - margin)]
    if placement == "tiled":
        step_x = max(1, int(tile_w * TILE_SPACING))
        step_y = max(1, int(tile_h * TILE_SPACING))
        positions = []
        for row, y in enumerate(range(-tile_h // 2, canvas_h, step_y)):
            # 奇数行错开半个步长
            offset = step_x // 2 if row % 2 else 0
            for x in range(-tile_w // 2 + offset, canvas_w, step_x):
                positions.append((x, y))
        return positions
    raise InvalidConfigurationError(f"未知的水印位置: {placement}")


def _composite_at(layer: Image.Image, element: Image.Image, placement: str, margin: int) -> Image.Image:
    # 平铺步长不小于元素尺寸，各位置互不重叠，可以直接 paste 到同一图层
    piece = Image.new("RGBA", layer.size, (0, 0, 0, 0))
    for position in _anchor_positions(placement, layer.size, element.size, margin):
        # paste 支持负坐标与越界裁剪
        piece.paste(element, position)
    return Image.alpha_composite(layer, piece)


def _scale_alpha(layer: Image.Image, opacity: float) -> Image.Image:
    if opacity >= 1.0:
        return layer

    array = np.asarray(layer, dtype=np.float32).copy()
    array[..., 3] *= opacity
    np.clip(np.rint(array), 0, 255, out=array)
    return Image.fromarray(array.astype(np.uint8))
