"""流水线测试：目录镜像、并发调度、失败隔离、启动错误与取消。"""

from __future__ import annotations

import csv
import threading
from pathlib import Path

import pytest
from PIL import Image

from filigram.core.config import ClassificationRules, JobConfig, WatermarkSpec
from filigram.core.exceptions import SetupError
from filigram.core.models import FileOutcome
from filigram.core.progress import ProgressUpdate
from filigram.processing.pipeline import resolve_worker_count, spread_watermark


def make_config(source: Path, destination: Path, **overrides) -> JobConfig:
    overrides.setdefault("rules", ClassificationRules(include_extensions=("jpg", "png")))
    overrides.setdefault("max_workers", 1)
    return JobConfig(source_root=source, destination_root=destination, **overrides)


def make_scenario_tree(source: Path) -> None:
    (source / "sub").mkdir(parents=True)
    Image.new("RGB", (640, 480), "blue").save(source / "a.jpg")
    (source / "b.txt").write_text("plain text, copied as is\n")
    Image.new("RGB", (90, 160), "yellow").save(source / "sub" / "c.png")


def relative_files(root: Path) -> set[Path]:
    return {p.relative_to(root) for p in root.rglob("*") if p.is_file()}


def test_mixed_tree_scenario(tmp_path: Path) -> None:
    source = tmp_path / "input"
    destination = tmp_path / "output"
    make_scenario_tree(source)

    summary = spread_watermark(make_config(source, destination))

    assert len(summary.succeeded) == 3
    assert len(summary.failed) == 0
    assert summary.watermarked == 2
    assert summary.copied == 1

    for name in ("a.jpg", "sub/c.png"):
        with Image.open(destination / name) as img:
            assert img.size == (500, 500)
    assert (destination / "b.txt").read_bytes() == (source / "b.txt").read_bytes()


def test_corrupt_image_does_not_abort_siblings(tmp_path: Path) -> None:
    source = tmp_path / "input"
    destination = tmp_path / "output"
    make_scenario_tree(source)
    (source / "d.jpg").write_bytes(b"\xff\xd8 truncated garbage")

    summary = spread_watermark(make_config(source, destination))

    assert summary.failed_paths == [Path("d.jpg")]
    assert summary.failure_reasons() == {Path("d.jpg"): "error-decode"}
    assert len(summary.succeeded) == 3
    assert (destination / "a.jpg").exists()


def test_destination_mirrors_source_paths(tmp_path: Path) -> None:
    source = tmp_path / "input"
    destination = tmp_path / "output"
    make_scenario_tree(source)
    (source / "empty" / "nested").mkdir(parents=True)
    (source / "sub" / "deeper").mkdir()
    (source / "sub" / "deeper" / "data.bin").write_bytes(bytes(range(256)))

    spread_watermark(make_config(source, destination))

    assert relative_files(destination) == relative_files(source)
    assert (destination / "empty" / "nested").is_dir()


def test_excluded_images_are_copied_verbatim(tmp_path: Path) -> None:
    source = tmp_path / "input"
    destination = tmp_path / "output"
    (source / ".hidden").mkdir(parents=True)
    Image.new("RGB", (30, 30), "red").save(source / "background.png")
    Image.new("RGB", (30, 30), "red").save(source / ".hidden" / "secret.jpg")
    rules = ClassificationRules(
        include_extensions=("jpg", "png"),
        excluded_dirs=(".hidden",),
        excluded_file_prefixes=("background",),
    )

    summary = spread_watermark(make_config(source, destination, rules=rules))

    assert summary.copied == 2
    for name in ("background.png", ".hidden/secret.jpg"):
        assert (destination / name).read_bytes() == (source / name).read_bytes()


def test_two_runs_produce_identical_bytes(tmp_path: Path) -> None:
    source = tmp_path / "input"
    make_scenario_tree(source)

    spread_watermark(make_config(source, tmp_path / "run1"))
    spread_watermark(make_config(source, tmp_path / "run2"))

    for relative in relative_files(source):
        assert (tmp_path / "run1" / relative).read_bytes() == (tmp_path / "run2" / relative).read_bytes()


def test_worker_count_does_not_change_summary(tmp_path: Path) -> None:
    source = tmp_path / "input"
    make_scenario_tree(source)
    (source / "d.jpg").write_text("corrupt")
    (source / "sub" / "e.png").write_bytes(b"")

    serial = spread_watermark(make_config(source, tmp_path / "serial", max_workers=1))
    parallel = spread_watermark(make_config(source, tmp_path / "parallel", max_workers=3))

    def key(outcomes: list[FileOutcome]) -> list[tuple[str, str]]:
        return sorted((o.relative_path.as_posix(), o.status) for o in outcomes)

    assert key(serial.all_outcomes()) == key(parallel.all_outcomes())
    assert len(parallel.failed) == 2


def test_callbacks_receive_every_outcome(tmp_path: Path) -> None:
    source = tmp_path / "input"
    make_scenario_tree(source)
    outcomes: list[FileOutcome] = []
    updates: list[ProgressUpdate] = []

    spread_watermark(
        make_config(source, tmp_path / "output"),
        progress_callback=updates.append,
        on_outcome=outcomes.append,
    )

    assert sorted(o.relative_path.as_posix() for o in outcomes) == ["a.jpg", "b.txt", "sub/c.png"]
    assert updates[-1].status == "done"
    assert updates[-1].completed == updates[-1].total == 3


def test_report_is_written(tmp_path: Path) -> None:
    source = tmp_path / "input"
    make_scenario_tree(source)
    report = tmp_path / "reports" / "run.csv"

    spread_watermark(make_config(source, tmp_path / "output", report_path=report))

    with report.open("r", encoding="utf-8", newline="") as handle:
        rows = list(csv.DictReader(handle))
    assert [row["relative_path"] for row in rows] == ["a.jpg", "b.txt", "sub/c.png"]
    assert {row["status"] for row in rows} == {"watermarked", "copied"}


def test_empty_source_yields_empty_summary(tmp_path: Path) -> None:
    source = tmp_path / "input"
    source.mkdir()

    summary = spread_watermark(make_config(source, tmp_path / "output"))

    assert summary.total == 0
    assert (tmp_path / "output").is_dir()


def test_cancel_before_start_runs_nothing(tmp_path: Path) -> None:
    source = tmp_path / "input"
    destination = tmp_path / "output"
    make_scenario_tree(source)
    cancel = threading.Event()
    cancel.set()

    summary = spread_watermark(make_config(source, destination), cancel_event=cancel)

    assert len(summary.cancelled) == 3
    assert summary.succeeded == [] and summary.failed == []
    assert relative_files(destination) == set()


def make_text_tree(source: Path, count: int) -> None:
    source.mkdir(parents=True)
    for idx in range(count):
        (source / f"note_{idx:02d}.txt").write_text(f"note {idx}\n")


def test_cancel_before_start_runs_nothing_in_process_pool(tmp_path: Path) -> None:
    source = tmp_path / "input"
    make_text_tree(source, 12)
    cancel = threading.Event()
    cancel.set()

    serial = spread_watermark(make_config(source, tmp_path / "serial", max_workers=1), cancel_event=cancel)
    pooled = spread_watermark(make_config(source, tmp_path / "pooled", max_workers=2), cancel_event=cancel)

    assert len(pooled.succeeded) == 0
    assert len(pooled.cancelled) == 12
    assert relative_files(tmp_path / "pooled") == set()
    assert sorted(o.relative_path for o in serial.cancelled) == sorted(o.relative_path for o in pooled.cancelled)


def test_cancel_during_pool_run_stops_submitting(tmp_path: Path) -> None:
    source = tmp_path / "input"
    make_text_tree(source, 12)
    cancel = threading.Event()

    def stop_after_first(outcome: FileOutcome) -> None:
        cancel.set()

    summary = spread_watermark(
        make_config(source, tmp_path / "output", max_workers=2),
        on_outcome=stop_after_first,
        cancel_event=cancel,
    )

    # 每次最多 4 个任务在途，其余任务在取消后不再提交
    assert len(summary.cancelled) >= 8
    assert len(summary.succeeded) + len(summary.cancelled) == 12
    assert summary.failed == []
    assert len(relative_files(tmp_path / "output")) == len(summary.succeeded)


def test_missing_source_is_setup_error(tmp_path: Path) -> None:
    with pytest.raises(SetupError):
        spread_watermark(make_config(tmp_path / "nope", tmp_path / "output"))
    assert not (tmp_path / "output").exists()


def test_destination_inside_source_is_setup_error(tmp_path: Path) -> None:
    source = tmp_path / "input"
    make_scenario_tree(source)

    with pytest.raises(SetupError):
        spread_watermark(make_config(source, source / "watermarked"))


def test_destination_that_is_a_file_is_setup_error(tmp_path: Path) -> None:
    source = tmp_path / "input"
    make_scenario_tree(source)
    blocker = tmp_path / "output"
    blocker.write_text("occupied")

    with pytest.raises(SetupError):
        spread_watermark(make_config(source, blocker))


def test_invalid_watermark_fails_before_any_write(tmp_path: Path) -> None:
    source = tmp_path / "input"
    make_scenario_tree(source)

    with pytest.raises(SetupError):
        spread_watermark(make_config(source, tmp_path / "output", watermark=WatermarkSpec(placement="nowhere")))
    assert not (tmp_path / "output").exists()


def test_worker_count_is_bounded() -> None:
    assert resolve_worker_count(8, 3) == 3
    assert resolve_worker_count(2, 100) == 2
    assert resolve_worker_count(None, 0) == 1
    assert 1 <= resolve_worker_count(None, 10_000) <= 10_000
