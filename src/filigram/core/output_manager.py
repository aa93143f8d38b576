"""输出写入：目标路径映射、图片编码与原样复制。"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Any, Optional

from PIL import Image

from filigram.core.exceptions import CopyFailed, EncodeFailed, SetupError
from filigram.core.walker import mirror_directories

LOGGER = logging.getLogger(__name__)

SUPPORTED_FORMATS = {
    ".jpg": "JPEG",
    ".jpeg": "JPEG",
    ".png": "PNG",
    ".bmp": "BMP",
    ".gif": "GIF",
    ".webp": "WEBP",
    ".tif": "TIFF",
    ".tiff": "TIFF",
}

EXIF_FORMATS = {"JPEG", "PNG", "WEBP"}
ICC_FORMATS = {"JPEG", "PNG", "WEBP", "TIFF"}


class OutputManager:
    """负责目标目录的准备与路径映射。"""

    def __init__(self, destination_root: Path) -> None:
        self.destination_root = Path(destination_root)

    def prepare(self, source_root: Path) -> int:
        """创建目标根目录并镜像源目录骨架，目标不可写时抛出 SetupError。"""

        try:
            self.destination_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise SetupError(f"无法创建目标目录 {self.destination_root}: {exc}") from exc
        if not self.destination_root.is_dir():
            raise SetupError(f"目标路径不是目录: {self.destination_root}")
        if not os.access(self.destination_root, os.W_OK | os.X_OK):
            raise SetupError(f"目标目录不可写: {self.destination_root}")

        try:
            return mirror_directories(source_root, self.destination_root)
        except OSError as exc:
            raise SetupError(f"创建目标目录结构失败: {exc}") from exc

    def destination_for(self, relative_path: Path) -> Path:
        """源文件相对路径在目标目录下对应的路径。"""

        return self.destination_root / relative_path


def save_image_file(
    image: Image.Image,
    destination: Path,
    *,
    exif: Optional[bytes] = None,
    icc_profile: Optional[bytes] = None,
) -> None:
    """将 PIL Image 保存到磁盘，格式由扩展名决定。"""

    suffix = destination.suffix.lower()
    image_format = SUPPORTED_FORMATS.get(suffix)
    if not image_format:
        raise EncodeFailed(f"不支持的输出格式: {suffix or '(无扩展名)'}")

    save_params: dict[str, Any] = {}
    image_to_save = image
    if image_format == "JPEG":
        save_params.update(quality=95, subsampling=1, optimize=True)
        if image.mode != "RGB":
            image_to_save = image.convert("RGB")
    elif image_format == "PNG":
        save_params.update(optimize=True)
        if image.mode not in {"RGB", "RGBA"}:
            image_to_save = image.convert("RGB")

    if exif and image_format in EXIF_FORMATS:
        save_params["exif"] = exif
    if icc_profile and image_format in ICC_FORMATS:
        save_params["icc_profile"] = icc_profile

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        image_to_save.save(destination, format=image_format, **save_params)
    except (OSError, ValueError, KeyError) as exc:
        raise EncodeFailed(f"写入文件失败: {destination}: {exc}") from exc
    finally:
        if image_to_save is not image:
            image_to_save.close()


def copy_file(source: Path, destination: Path) -> None:
    """原样复制文件（内容逐字节一致，同时保留时间戳与权限）。"""

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, destination)
    except OSError as exc:
        raise CopyFailed(f"复制文件失败: {source} -> {destination}: {exc}") from exc
