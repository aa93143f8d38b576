"""处理流水线：遍历、分类、并发加水印/复制与结果汇总。"""

from __future__ import annotations

import logging
import os
import threading
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ProcessPoolExecutor, wait
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from filigram.core.classifier import Classifier
from filigram.core.config import JobConfig, WatermarkSpec
from filigram.core.exceptions import FiligramError, SetupError
from filigram.core.models import CANCELLED_STATUS, FileOutcome, FileTask, RunSummary
from filigram.core.output_manager import OutputManager
from filigram.core.progress import ProgressUpdate
from filigram.core.report import write_csv_report
from filigram.core.walker import walk
from filigram.processing.renderer import build_watermark_layer
from filigram.processing.worker import run_task

LOGGER = logging.getLogger(__name__)

IN_FLIGHT_FACTOR = 2


ProgressCallback = Optional[Callable[[ProgressUpdate], None]]
OutcomeCallback = Optional[Callable[[FileOutcome], None]]


def spread_watermark(
    config: JobConfig,
    progress_callback: ProgressCallback = None,
    on_outcome: OutcomeCallback = None,
    cancel_event: Optional[threading.Event] = None,
) -> RunSummary:
    """递归处理 source_root，把结果写入 destination_root。

    启动阶段的问题（源目录不存在、目标不可写、水印配置错误）抛出 SetupError，
    此时不会调度任何任务。单个文件的失败只记录在返回的 RunSummary 中。
    函数会阻塞直到所有任务结束。
    """

    source_root, destination_root = _check_roots(config.source_root, config.destination_root)
    _check_watermark(config.watermark)

    output_manager = OutputManager(destination_root)
    output_manager.prepare(source_root)

    LOGGER.info("开始扫描输入目录：%s", source_root)
    tasks = build_tasks(config, source_root, output_manager)
    LOGGER.info("发现 %d 个文件", len(tasks))

    workers = resolve_worker_count(config.max_workers, len(tasks))
    summary = dispatch(
        tasks,
        max_workers=workers,
        progress_callback=progress_callback,
        on_outcome=on_outcome,
        cancel_event=cancel_event,
    )

    LOGGER.info(
        "处理完成：加水印 %d，复制 %d，失败 %d，取消 %d",
        summary.watermarked,
        summary.copied,
        len(summary.failed),
        len(summary.cancelled),
    )
    if config.report_path is not None:
        _write_report(summary, Path(config.report_path))
    return summary


def build_tasks(config: JobConfig, source_root: Path, output_manager: OutputManager) -> list[FileTask]:
    """遍历源目录，为每个文件生成一个 FileTask。"""

    classifier = Classifier(config.rules)
    tasks: list[FileTask] = []
    for relative in walk(source_root):
        classification = classifier.classify(relative)
        LOGGER.debug("%s -> %s", relative, classification.value)
        tasks.append(
            FileTask(
                source_path=source_root / relative,
                destination_path=output_manager.destination_for(relative),
                relative_path=relative,
                classification=classification,
                watermark=config.watermark,
                preserve_metadata=config.preserve_metadata,
            )
        )
    return tasks


def resolve_worker_count(requested: Optional[int], task_count: int) -> int:
    """并发数默认取 CPU 核心数，且不超过任务数。"""

    if requested is None:
        requested = os.cpu_count() or 1
    return max(1, min(requested, task_count))


def dispatch(
    tasks: Sequence[FileTask],
    max_workers: int = 1,
    progress_callback: ProgressCallback = None,
    on_outcome: OutcomeCallback = None,
    cancel_event: Optional[threading.Event] = None,
) -> RunSummary:
    """执行全部任务并汇总结果；所有任务结束后才返回。

    结果只在当前线程中逐条累加，工作进程之间不共享任何可变状态。
    """

    summary = RunSummary()
    total = len(tasks)
    completed = 0

    def record(outcome: FileOutcome) -> None:
        nonlocal completed
        summary.record(outcome)
        completed += 1
        _log_outcome(outcome)
        if on_outcome is not None:
            on_outcome(outcome)
        _emit_progress(progress_callback, completed, total, f"{outcome.status} {outcome.relative_path}")

    _emit_progress(progress_callback, 0, total, "开始执行处理任务")

    if max_workers <= 1:
        for task in tasks:
            if _is_cancelled(cancel_event):
                record(_cancelled_outcome(task))
            else:
                record(_run_guarded(task))
    else:
        _run_pool(tasks, max_workers, record, cancel_event)

    status = "cancelled" if summary.cancelled else "done"
    if progress_callback:
        progress_callback(ProgressUpdate(total=total, completed=completed, message="处理完成", status=status))
    return summary


def _run_pool(
    tasks: Sequence[FileTask],
    max_workers: int,
    record: Callable[[FileOutcome], None],
    cancel_event: Optional[threading.Event],
) -> None:
    """分批提交到进程池，每次提交前检查取消标记。

    同时在途的任务数不超过 max_workers * IN_FLIGHT_FACTOR，取消后不再提交新任务。
    """

    queue = deque(tasks)
    in_flight: dict[Future, FileTask] = {}
    cancelling = False
    with ProcessPoolExecutor(max_workers=max_workers) as executor:
        while queue or in_flight:
            if not cancelling and _is_cancelled(cancel_event):
                cancelling = True
                _cancel_pending(in_flight, len(queue))
                while queue:
                    record(_cancelled_outcome(queue.popleft()))

            while queue and len(in_flight) < max_workers * IN_FLIGHT_FACTOR:
                task = queue.popleft()
                in_flight[executor.submit(run_task, task)] = task

            if not in_flight:
                break
            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                record(_collect(future, in_flight.pop(future)))


def _collect(future: Future, task: FileTask) -> FileOutcome:
    if future.cancelled():
        return _cancelled_outcome(task)
    try:
        return future.result()
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("任务执行异常：%s", exc)
        return _worker_error(task, exc)


def _run_guarded(task: FileTask) -> FileOutcome:
    try:
        return run_task(task)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("任务执行异常：%s", exc)
        return _worker_error(task, exc)


def _worker_error(task: FileTask, exc: BaseException) -> FileOutcome:
    return FileOutcome(
        relative_path=task.relative_path,
        source_path=task.source_path,
        classification=task.classification,
        status="error-worker",
        message=str(exc),
    )


def _cancelled_outcome(task: FileTask) -> FileOutcome:
    return FileOutcome(
        relative_path=task.relative_path,
        source_path=task.source_path,
        classification=task.classification,
        status=CANCELLED_STATUS,
        message="任务已取消，未执行",
    )


def _cancel_pending(futures: Iterable[Future], unsubmitted: int) -> None:
    # 已经在运行的任务无法取消，会正常执行完毕
    cancelled = sum(1 for future in futures if future.cancel())
    LOGGER.warning("收到取消请求，%d 个未开始的任务已取消", cancelled + unsubmitted)


def _is_cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


def _log_outcome(outcome: FileOutcome) -> None:
    if outcome.ok or outcome.status == CANCELLED_STATUS:
        LOGGER.debug("%s [%s] %s", outcome.relative_path, outcome.classification.value, outcome.status)
    else:
        LOGGER.error("处理失败：%s [%s] %s", outcome.relative_path, outcome.status, outcome.message)


def _check_roots(source_root: Path, destination_root: Path) -> tuple[Path, Path]:
    source = Path(source_root).expanduser().resolve()
    destination = Path(destination_root).expanduser().resolve()

    if not source.is_dir():
        raise SetupError(f"源路径不存在或不是目录: {source_root}")
    if destination == source or source in destination.parents:
        raise SetupError(f"目标目录不能位于源目录内部: {destination_root}")
    return source, destination


def _check_watermark(spec: WatermarkSpec) -> None:
    """提前生成一次水印图层，配置错误在调度前暴露。"""

    try:
        build_watermark_layer(spec)
    except FiligramError as exc:
        raise SetupError(f"水印配置无效: {exc}") from exc


def _emit_progress(
    callback: ProgressCallback,
    completed: int,
    total: int,
    message: Optional[str] = None,
) -> None:
    if not callback:
        return
    callback(ProgressUpdate(total=total, completed=completed, message=message))


def _write_report(summary: RunSummary, report_path: Path) -> None:
    try:
        write_csv_report(summary, report_path)
    except OSError as exc:
        LOGGER.error("写入报告失败：%s", exc)
    else:
        LOGGER.info("报告文件：%s", report_path)
