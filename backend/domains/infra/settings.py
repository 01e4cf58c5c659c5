"""
配置管理（基于 pydantic-settings）

提供:
- 类型安全的配置
- 环境变量自动绑定
- 配置校验
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SyncSettings(BaseSettings):
    """设备端同步配置"""
    model_config = SettingsConfigDict(
        env_prefix="NOTES_SYNC_",
        extra="ignore",
    )

    api_base_url: str = Field(default="http://localhost:8000/api/v1", description="远端 API 地址")
    request_timeout: float = Field(default=10.0, gt=0, description="单次远端调用超时（秒）")
    period_seconds: float = Field(default=900.0, gt=0, description="周期同步间隔（秒），默认 15 分钟")
    backoff_step_seconds: float = Field(default=300.0, ge=0, description="每次失败追加的退避时长（秒）")
    max_backoff_seconds: float = Field(default=3600.0, ge=0, description="退避追加时长上限（秒）")
    protect_pending_on_pull: bool = Field(default=True, description="拉取时是否跳过本地待推送的实体")
    max_rejections: int = Field(default=5, ge=0, description="被远端拒绝多少次后暂停推送，0 表示不暂停")
    replica_path: Path = Field(
        default=Path.home() / ".notes_sync" / "replica.db",
        description="本地副本 SQLite 文件路径",
    )
    connectivity_cache_ttl: float = Field(default=5.0, ge=0, description="联网探测结果缓存时长（秒）")
    health_url: str | None = Field(default=None, description="联网探测地址，默认为 API 主机的 /health")

    @field_validator("api_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @model_validator(mode="after")
    def check_backoff(self) -> "SyncSettings":
        if self.max_backoff_seconds < self.backoff_step_seconds:
            raise ValueError("max_backoff_seconds must be >= backoff_step_seconds")
        return self


class ServerSettings(BaseSettings):
    """远端服务配置"""
    model_config = SettingsConfigDict(
        env_prefix="NOTES_SERVER_",
        extra="ignore",
    )

    api_tokens: dict[str, str] = Field(
        default_factory=dict,
        description="Bearer token 到所有者 ID 的映射（JSON）",
    )
    ensure_schema: bool = Field(default=True, description="启动时是否执行建表语句")


class LoggingSettings(BaseSettings):
    """日志配置"""
    model_config = SettingsConfigDict(
        env_prefix="NOTES_LOG_",
        extra="ignore",
    )

    level: str = Field(default="INFO", description="日志级别")
    json_format: bool = Field(default=False, description="是否使用 JSON 格式")
    include_timestamp: bool = Field(default=True, description="是否包含时间戳")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v):
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper


class NotesSettings(BaseSettings):
    """
    主配置

    统一管理所有子配置，支持从环境变量和 .env 文件加载。
    """
    model_config = SettingsConfigDict(
        env_prefix="NOTES_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    sync: SyncSettings = Field(default_factory=SyncSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    environment: str = Field(default="development", description="运行环境")

    @property
    def is_production(self) -> bool:
        """是否生产环境"""
        return self.environment.lower() in ("production", "prod")


@lru_cache
def get_settings() -> NotesSettings:
    """
    获取配置单例

    使用 lru_cache 确保只加载一次配置。
    """
    return NotesSettings()


def get_sync_settings() -> SyncSettings:
    """获取同步配置"""
    return get_settings().sync


def get_server_settings() -> ServerSettings:
    """获取远端服务配置"""
    return get_settings().server


def get_logging_settings() -> LoggingSettings:
    """获取日志配置"""
    return get_settings().logging


def reload_settings() -> NotesSettings:
    """清除缓存并重新加载配置"""
    get_settings.cache_clear()
    return get_settings()
