"""
结构化日志配置

提供统一的日志格式和配置，支持:
- 控制台输出（开发环境）
- JSON 格式输出（生产环境 / 设备端日志采集）
"""

import logging
import sys
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import structlog


class LogFormat(str, Enum):
    """日志格式"""
    JSON = "json"
    CONSOLE = "console"


@dataclass
class LogConfig:
    """日志配置"""
    level: str = "INFO"
    format: LogFormat = LogFormat.JSON
    add_timestamp: bool = True
    service_name: str = "notes-api"
    extra_tags: dict = field(default_factory=dict)

    @classmethod
    def from_settings(cls, service_name: str = "notes-api") -> "LogConfig":
        """从 LoggingSettings 创建配置"""
        from ..settings import get_logging_settings

        settings = get_logging_settings()
        return cls(
            level=settings.level,
            format=LogFormat.JSON if settings.json_format else LogFormat.CONSOLE,
            add_timestamp=settings.include_timestamp,
            service_name=service_name,
        )


def configure_logging(config: Optional[LogConfig] = None, service_name: str = "notes-api"):
    """
    配置结构化日志

    Args:
        config: 日志配置，None 则从 LoggingSettings（NOTES_LOG_*）读取
        service_name: 服务名称
    """
    if config is None:
        config = LogConfig.from_settings(service_name=service_name)

    log_level = getattr(logging, config.level, logging.INFO)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    # 渲染交给标准库 logging 的 ProcessorFormatter
    processors.append(structlog.stdlib.ProcessorFormatter.wrap_for_formatter)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    if config.format == LogFormat.JSON:
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(ensure_ascii=False),
            foreign_pre_chain=shared_processors,
        )
    else:
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(
                colors=sys.stdout.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            ),
            foreign_pre_chain=shared_processors,
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console_handler)
    root_logger.setLevel(log_level)

    if config.extra_tags:
        structlog.contextvars.bind_contextvars(**config.extra_tags)

    # 第三方库日志级别
    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    """
    获取结构化日志器

    使用示例:
        logger = get_logger(__name__)
        logger.info("sync_completed", owner_id="u1", pushed=3)
    """
    return structlog.get_logger(name)


def bind_request_context(request_id: str, user_id: Optional[str] = None):
    """
    绑定请求上下文到日志

    Args:
        request_id: 请求 ID
        user_id: 用户 ID（可选）
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    if user_id:
        structlog.contextvars.bind_contextvars(user_id=user_id)


def clear_request_context():
    """清除请求上下文"""
    structlog.contextvars.clear_contextvars()
