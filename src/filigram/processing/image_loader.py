"""图片加载与基础预处理实现。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from filigram.core.exceptions import DecodeFailed

LOGGER = logging.getLogger(__name__)

EXIF_ORIENTATION_TAG = 0x0112


@dataclass(slots=True)
class LoadedImage:
    """解码后的图片及其需要回写的元数据。"""

    image: Image.Image
    format: Optional[str]
    exif: Optional[bytes] = None
    icc_profile: Optional[bytes] = None

    def close(self) -> None:
        self.image.close()


def load_image(path: Path) -> LoadedImage:
    """加载单张图片并执行 EXIF 旋转与模式归一化。

    返回值中的 Image 为新对象，调用者负责关闭。
    EXIF 中的方向标记在旋转后被移除，避免查看器重复旋转。
    """

    try:
        with Image.open(path) as img:
            img.load()
            source_format = img.format
            # 转为 RGB 后只有 RGB 系的色彩配置仍然有效
            icc_profile = img.info.get("icc_profile") if img.mode in {"RGB", "RGBA"} else None

            # EXIF Orientation 校正
            transposed = ImageOps.exif_transpose(img)
            exif = _exif_without_orientation(transposed)

            if transposed.mode != "RGB":
                transposed = _convert_to_rgb(transposed)

            return LoadedImage(
                image=transposed.copy(),
                format=source_format,
                exif=exif,
                icc_profile=icc_profile,
            )
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        LOGGER.debug("无法识别图像文件 %s: %s", path, exc)
        raise DecodeFailed(f"无法解码图像: {path}") from exc


def _exif_without_orientation(img: Image.Image) -> Optional[bytes]:
    exif = img.getexif()
    if not exif:
        return None
    exif.pop(EXIF_ORIENTATION_TAG, None)
    return exif.tobytes() if exif else None


def _convert_to_rgb(img: Image.Image) -> Image.Image:
    """将任意模式图像转换为 RGB。"""

    if img.mode in {"RGBA", "LA"} or (img.mode == "P" and "transparency" in img.info):
        # 保留 Alpha 信息，通过白色背景混合生成 RGB。
        rgba = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(rgba, mask=rgba.getchannel("A"))
        return background

    return img.convert("RGB")
