"""并发处理的工作单元。"""

from __future__ import annotations

import logging
from typing import Optional

from PIL import Image

from filigram.core.exceptions import TaskError
from filigram.core.models import Classification, FileOutcome, FileTask
from filigram.core.output_manager import copy_file, save_image_file
from filigram.processing.image_loader import LoadedImage, load_image
from filigram.processing.renderer import build_watermark_layer, render

LOGGER = logging.getLogger(__name__)


def run_task(task: FileTask) -> FileOutcome:
    """在工作进程中处理单个文件：加水印或原样复制。

    单个文件的失败会被转换为带失败状态的 FileOutcome，不会向外抛出。
    """

    try:
        if task.classification is Classification.WATERMARKABLE:
            _watermark(task)
            status = "watermarked"
        else:
            copy_file(task.source_path, task.destination_path)
            status = "copied"
    except TaskError as exc:
        LOGGER.debug("处理失败 %s: %s", task.relative_path, exc)
        return FileOutcome(
            relative_path=task.relative_path,
            source_path=task.source_path,
            classification=task.classification,
            status=exc.status,
            message=str(exc),
        )

    return FileOutcome(
        relative_path=task.relative_path,
        source_path=task.source_path,
        classification=task.classification,
        status=status,
        output_path=task.destination_path,
    )


def _watermark(task: FileTask) -> None:
    loaded: Optional[LoadedImage] = None
    rendered: Optional[Image.Image] = None
    try:
        loaded = load_image(task.source_path)
        rendered = render(loaded.image, task.watermark, build_watermark_layer(task.watermark))
        save_image_file(
            rendered,
            task.destination_path,
            exif=loaded.exif if task.preserve_metadata else None,
            icc_profile=loaded.icc_profile if task.preserve_metadata else None,
        )
    finally:
        if rendered is not None:
            rendered.close()
        if loaded is not None:
            loaded.close()
