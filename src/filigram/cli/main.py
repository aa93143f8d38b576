"""命令行入口。"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import List, Optional

import typer
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

from filigram.core.config import DEFAULT_IMAGE_EXTENSIONS, ClassificationRules, JobConfig, WatermarkSpec
from filigram.core.exceptions import FiligramError
from filigram.core.progress import ProgressUpdate
from filigram.processing.pipeline import spread_watermark
from filigram.utils.logging import setup_logging

app = typer.Typer(help="递归遍历目录，为图片添加水印并原样复制其他文件。")

LOGGER = logging.getLogger(__name__)

DEFAULT_WATERMARK = WatermarkSpec()


def _build_progress_callback(progress: Progress):
    task_id: Optional[int] = None

    def callback(update: ProgressUpdate) -> None:
        nonlocal task_id
        if update.total == 0:
            return
        if task_id is None:
            task_id = progress.add_task("处理文件", total=update.total)
        progress.update(task_id, completed=update.completed)

    return callback


def _clean_destination(source: Path, destination: Path) -> None:
    source = source.expanduser().resolve()
    destination = destination.expanduser().resolve()
    if destination == source or destination in source.parents:
        raise typer.BadParameter("--clean 不能删除包含源目录的路径", param_hint="DESTINATION")
    if destination.is_dir():
        LOGGER.warning("删除已存在的目标目录：%s", destination)
        shutil.rmtree(destination)


@app.callback()
def main() -> None:
    """递归遍历目录，为图片添加水印并原样复制其他文件。"""


@app.command("run")
def run_cli(  # noqa: PLR0913
    source: Path = typer.Argument(..., help="源目录"),
    destination: Path = typer.Argument(..., help="目标目录，将镜像源目录结构"),
    text: str = typer.Option(DEFAULT_WATERMARK.text, "--text", "-t", help="水印文本，传空字符串则只使用水印图片"),
    color: str = typer.Option(DEFAULT_WATERMARK.color, "--color", help="水印颜色 (HEX)"),
    opacity: float = typer.Option(DEFAULT_WATERMARK.opacity, "--opacity", help="水印透明度 0.0~1.0"),
    font: Optional[Path] = typer.Option(None, "--font", help="TTF/OTF 字体文件"),
    font_size: int = typer.Option(DEFAULT_WATERMARK.font_size, "--font-size", help="字号（像素）"),
    angle: float = typer.Option(DEFAULT_WATERMARK.angle, "--angle", help="diagonal/tiled 模式下的旋转角度（逆时针）"),
    placement: str = typer.Option(
        DEFAULT_WATERMARK.placement,
        "--placement",
        help="水印位置：diagonal/center/top-left/top-right/bottom-left/bottom-right/tiled",
    ),
    margin: int = typer.Option(DEFAULT_WATERMARK.margin, "--margin", help="角落位置的边距（像素）"),
    graphic: Optional[Path] = typer.Option(None, "--graphic", help="水印图片（如 PNG 徽标）"),
    graphic_scale: float = typer.Option(DEFAULT_WATERMARK.graphic_scale, "--graphic-scale", help="水印图片宽度占画布比例"),
    fit: str = typer.Option(DEFAULT_WATERMARK.fit_mode, "--fit", help="缩放到 500x500 的方式：stretch/cover/contain"),
    background_color: str = typer.Option(
        DEFAULT_WATERMARK.background_color, "--background-color", help="contain 模式的背景色 (HEX)"
    ),
    include: Optional[List[str]] = typer.Option(None, "--include", "-i", help="需要加水印的扩展名，可指定多次"),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-e", help="排除规则（通配符或子串），可指定多次"),
    exclude_dir: Optional[List[str]] = typer.Option(None, "--exclude-dir", help="排除的目录名，可指定多次"),
    exclude_prefix: Optional[List[str]] = typer.Option(None, "--exclude-prefix", help="排除的文件名前缀，可指定多次"),
    max_workers: Optional[int] = typer.Option(None, "--workers", "-w", help="并发进程数量，默认取 CPU 核心数"),
    preserve_metadata: bool = typer.Option(True, "--metadata/--no-metadata", help="是否保留 EXIF 与 ICC 信息"),
    report: Optional[Path] = typer.Option(None, "--report", help="CSV 报告输出路径"),
    clean: bool = typer.Option(False, "--clean", help="处理前删除已存在的目标目录"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="输出逐文件的调试日志"),
) -> None:
    """执行批量加水印。"""

    setup_logging(verbose)

    if clean:
        _clean_destination(source, destination)

    watermark = WatermarkSpec(
        text=text,
        color=color,
        opacity=opacity,
        font_path=font.expanduser().resolve() if font else None,
        font_size=font_size,
        angle=angle,
        placement=placement,
        margin=margin,
        graphic_path=graphic.expanduser().resolve() if graphic else None,
        graphic_scale=graphic_scale,
        fit_mode=fit,
        background_color=background_color,
    )
    rules = ClassificationRules(
        include_extensions=tuple(include) if include else DEFAULT_IMAGE_EXTENSIONS,
        exclude_patterns=tuple(exclude or ()),
        excluded_dirs=tuple(exclude_dir or ()),
        excluded_file_prefixes=tuple(exclude_prefix or ()),
    )
    job = JobConfig(
        source_root=source,
        destination_root=destination,
        watermark=watermark,
        rules=rules,
        max_workers=max_workers,
        preserve_metadata=preserve_metadata,
        report_path=report.expanduser().resolve() if report else None,
    )

    progress = Progress(
        SpinnerColumn(),
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        TimeRemainingColumn(),
    )

    try:
        with progress:
            summary = spread_watermark(job, progress_callback=_build_progress_callback(progress))
    except FiligramError as exc:
        typer.echo(f"错误：{exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(
        f"处理完成：加水印 {summary.watermarked} 个，复制 {summary.copied} 个，失败 {len(summary.failed)} 个。"
    )
    counts = summary.status_counts()
    if counts:
        typer.echo("状态统计：" + ", ".join(f"{status}={counts[status]}" for status in sorted(counts)))
    for path, reason in sorted(summary.failure_reasons().items()):
        typer.echo(f"  失败 {path.as_posix()}: {reason}")
    if report:
        typer.echo(f"报告文件：{job.report_path}")


if __name__ == "__main__":
    app()
