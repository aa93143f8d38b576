"""日志配置。"""

from __future__ import annotations

import logging

NOISY_LOGGERS = ("PIL",)


def setup_logging(verbose: bool = False) -> None:
    """初始化命令行日志；verbose 时输出逐文件的 debug 事件。"""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(processName)s] %(levelname)s %(name)s: %(message)s",
    )
    # Pillow 在 DEBUG 级别会打印每个插件的加载信息
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO)
