"""报告生成工具。"""

from __future__ import annotations

import csv
from pathlib import Path

from filigram.core.models import RunSummary

HEADER = ["relative_path", "classification", "status", "output_path", "message"]


def write_csv_report(summary: RunSummary, report_path: Path) -> Path:
    """将每个文件的处理结果写入 CSV 报告。"""

    report_path.parent.mkdir(parents=True, exist_ok=True)
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for record in summary.all_outcomes():
            writer.writerow(
                [
                    record.relative_path.as_posix(),
                    record.classification.value,
                    record.status,
                    str(record.output_path) if record.output_path else "",
                    record.message or "",
                ]
            )
    return report_path
