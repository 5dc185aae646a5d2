"""
日志配置
基于 loguru，全局使用 `log`
"""
import sys

from loguru import logger as log

from bookcatalog.config import LoggingConfig

_TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> "
    "| <level>{level:<8}</level> "
    "| {name}:{function}:{line} "
    "| {message}"
)


def setup_logging(config: LoggingConfig) -> None:
    """按配置重新设置日志输出（stderr + 可选的滚动文件）"""
    log.remove()
    serialize = config.format.lower() == "json"

    log.add(
        sys.stderr,
        level=config.level,
        format=_TEXT_FORMAT,
        serialize=serialize,
        backtrace=True,
        diagnose=False,
    )

    if config.file:
        log.add(
            config.file,
            level=config.level,
            format=_TEXT_FORMAT,
            serialize=serialize,
            rotation=config.max_size,
            retention=config.backup_count,
            encoding="utf-8",
            enqueue=True,
            diagnose=False,
        )


__all__ = ["log", "setup_logging"]
