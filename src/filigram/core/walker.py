"""目录遍历：枚举源目录中的文件，并在目标目录下镜像目录结构。

符号链接（无论指向文件还是目录）一律跳过、不跟随，避免循环链接导致无限遍历。
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator

LOGGER = logging.getLogger(__name__)


def _walk_tree(root: Path) -> Iterator[tuple[Path, list[str], list[str]]]:
    """os.walk 的包装：不跟随符号链接，目录与文件名按字典序排列。"""

    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        current = Path(dirpath)
        kept_dirs = []
        for name in sorted(dirnames):
            if (current / name).is_symlink():
                LOGGER.debug("跳过目录符号链接: %s", current / name)
                continue
            kept_dirs.append(name)
        # 原地修改 dirnames 以控制 os.walk 的下钻范围
        dirnames[:] = kept_dirs
        yield current, kept_dirs, sorted(filenames)


def walk(source_root: Path) -> Iterator[Path]:
    """惰性枚举 source_root 下所有常规文件，返回相对路径。

    每次调用都会重新读取文件系统，不缓存任何结果。
    """

    root = Path(source_root)
    for current, _, filenames in _walk_tree(root):
        for name in filenames:
            candidate = current / name
            if candidate.is_symlink():
                LOGGER.debug("跳过文件符号链接: %s", candidate)
                continue
            if not candidate.is_file():
                LOGGER.debug("跳过非常规文件: %s", candidate)
                continue
            yield candidate.relative_to(root)


def walk_directories(source_root: Path) -> Iterator[Path]:
    """枚举 source_root 下所有子目录（含空目录）的相对路径。"""

    root = Path(source_root)
    for current, dirnames, _ in _walk_tree(root):
        for name in dirnames:
            yield (current / name).relative_to(root)


def mirror_directories(source_root: Path, destination_root: Path) -> int:
    """在 destination_root 下创建与源目录相同的目录骨架，返回创建的目录数。

    目录创建是幂等的，已存在的目录不会报错。
    """

    destination = Path(destination_root)
    destination.mkdir(parents=True, exist_ok=True)
    created = 0
    for relative in walk_directories(source_root):
        (destination / relative).mkdir(parents=True, exist_ok=True)
        created += 1
    LOGGER.debug("目标目录骨架已创建：%d 个目录", created)
    return created
