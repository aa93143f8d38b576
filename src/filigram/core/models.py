"""核心数据模型定义。"""

from __future__ import annotations

import enum
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from filigram.core.config import WatermarkSpec

SUCCESS_STATUSES = {"watermarked", "copied"}
CANCELLED_STATUS = "cancelled"


class Classification(enum.Enum):
    """文件分类：加水印或原样复制。"""

    WATERMARKABLE = "watermarkable"
    EXCLUDED = "excluded"


@dataclass(frozen=True, slots=True)
class FileTask:
    """描述单个文件的处理任务，只会被执行一次。"""

    source_path: Path
    destination_path: Path
    relative_path: Path
    classification: Classification
    watermark: WatermarkSpec
    preserve_metadata: bool = True


@dataclass(slots=True)
class FileOutcome:
    """记录单个文件的处理结果（用于汇总/报告/日志）。"""

    relative_path: Path
    source_path: Path
    classification: Classification
    status: str
    output_path: Optional[Path] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in SUCCESS_STATUSES


@dataclass(slots=True)
class RunSummary:
    """一次完整遍历的处理结果汇总。

    只能由调度循环调用 record() 逐条累加，所有任务结束后才返回给调用方。
    """

    succeeded: list[FileOutcome] = field(default_factory=list)
    failed: list[FileOutcome] = field(default_factory=list)
    cancelled: list[FileOutcome] = field(default_factory=list)

    def record(self, outcome: FileOutcome) -> None:
        if outcome.ok:
            self.succeeded.append(outcome)
        elif outcome.status == CANCELLED_STATUS:
            self.cancelled.append(outcome)
        else:
            self.failed.append(outcome)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.cancelled)

    @property
    def watermarked(self) -> int:
        return sum(1 for o in self.succeeded if o.status == "watermarked")

    @property
    def copied(self) -> int:
        return sum(1 for o in self.succeeded if o.status == "copied")

    @property
    def failed_paths(self) -> list[Path]:
        return sorted(o.relative_path for o in self.failed)

    def failure_reasons(self) -> dict[Path, str]:
        """失败文件的相对路径 -> 失败状态。"""

        return {o.relative_path: o.status for o in self.failed}

    def status_counts(self) -> Counter[str]:
        return Counter(o.status for o in self.all_outcomes())

    def all_outcomes(self) -> list[FileOutcome]:
        """返回所有结果记录，按相对路径排序，方便生成报告。"""

        return sorted(
            [*self.succeeded, *self.failed, *self.cancelled],
            key=lambda o: o.relative_path.as_posix(),
        )
