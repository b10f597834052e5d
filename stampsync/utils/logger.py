"""
日志系统配置
"""

import sys
import logging
import structlog
from typing import Optional


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[str] = None
):
    """
    配置结构化日志系统

    Args:
        level: 日志级别 (DEBUG, INFO, WARNING, ERROR)
        log_format: 日志格式 (text, json)
        log_file: 日志文件路径（可选，文件中始终写 JSON）
    """
    log_level_map = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
    }
    numeric_level = log_level_map.get(level.upper(), logging.INFO)

    # 处理器列表
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if log_file:
        # 文件日志：经由标准库 logging 输出，控制台同时保留
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        logging.root.addHandler(file_handler)
        logging.root.setLevel(numeric_level)

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        logging.root.addHandler(console_handler)

        processors.append(structlog.processors.JSONRenderer())
        logger_factory = structlog.stdlib.LoggerFactory()
    else:
        # 格式化器
        if log_format == "json":
            processors.append(structlog.processors.JSONRenderer())
        else:
            processors.append(
                structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
            )
        logger_factory = structlog.PrintLoggerFactory(file=sys.stderr)

    # 配置
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger()
    logger.debug("Logging configured", level=level, format=log_format, file=log_file)

    return logger
