"""
配置管理模块
加载 YAML 配置文件和环境变量
"""
import os
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import BaseModel, Field, model_validator


class ServerConfig(BaseModel):
    """服务器配置"""
    host: str = "0.0.0.0"
    port: int = 8080
    reload: bool = False


class DatabaseConfig(BaseModel):
    """数据库配置"""
    url: str = "sqlite+aiosqlite:///data/catalog.db"
    timeout: float = 10.0  # 单次存储调用超时（秒）
    echo: bool = False


class SecurityConfig(BaseModel):
    """安全配置"""
    token_bytes: int = 32
    token_expire_days: int = 10  # 0 表示永不过期
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)


class LoggingConfig(BaseModel):
    """日志配置"""
    level: str = "INFO"
    format: str = "text"  # text / json
    max_size: int = 10485760  # 10MB
    backup_count: int = 5
    file: str = "data/logs/app.log"


class ReviewsConfig(BaseModel):
    """评分配置"""
    min_rating: int = 1
    max_rating: int = 5
    max_conflict_retries: int = Field(default=3, ge=1)

    @model_validator(mode="after")
    def check_rating_range(self) -> "ReviewsConfig":
        if self.min_rating > self.max_rating:
            raise ValueError(f"min_rating ({self.min_rating}) 不能大于 max_rating ({self.max_rating})")
        return self


class ReleaseConfig(BaseModel):
    """发布信息"""
    name: str = "Book Catalog"
    version: str = "1.0.0"


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class Config(BaseModel):
    """主配置类"""
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    reviews: ReviewsConfig = Field(default_factory=ReviewsConfig)
    release: ReleaseConfig = Field(default_factory=ReleaseConfig)

    @classmethod
    def load(cls, config_path: str = "config/config.yaml") -> "Config":
        """
        加载配置文件

        Args:
            config_path: 配置文件路径

        Returns:
            Config实例
        """
        config_data: Dict[str, Any] = {}

        if os.path.exists(config_path):
            with open(config_path, "r", encoding="utf-8") as f:
                config_data = yaml.safe_load(f) or {}

        # 环境变量覆盖
        if server_host := os.getenv("SERVER_HOST"):
            config_data.setdefault("server", {})["host"] = server_host
        if server_port := os.getenv("SERVER_PORT"):
            config_data.setdefault("server", {})["port"] = int(server_port)
        if server_reload := os.getenv("SERVER_RELOAD"):
            config_data.setdefault("server", {})["reload"] = _env_bool(server_reload)
        if db_url := os.getenv("DATABASE_URL"):
            config_data.setdefault("database", {})["url"] = db_url
        if db_timeout := os.getenv("DATABASE_TIMEOUT"):
            config_data.setdefault("database", {})["timeout"] = float(db_timeout)
        if token_expire := os.getenv("TOKEN_EXPIRE_DAYS"):
            config_data.setdefault("security", {})["token_expire_days"] = int(token_expire)
        if log_level := os.getenv("LOG_LEVEL"):
            config_data.setdefault("logging", {})["level"] = log_level
        if log_format := os.getenv("LOG_FORMAT"):
            config_data.setdefault("logging", {})["format"] = log_format
        if (log_file := os.getenv("LOG_FILE")) is not None:
            config_data.setdefault("logging", {})["file"] = log_file
        if max_retries := os.getenv("REVIEW_MAX_CONFLICT_RETRIES"):
            config_data.setdefault("reviews", {})["max_conflict_retries"] = int(max_retries)
        if app_name := os.getenv("APP_NAME"):
            config_data.setdefault("release", {})["name"] = app_name
        if app_version := os.getenv("APP_VERSION"):
            config_data.setdefault("release", {})["version"] = app_version

        return cls(**config_data)

    def ensure_directories(self):
        """确保数据和日志目录存在"""
        if self.logging.file:
            Path(self.logging.file).parent.mkdir(parents=True, exist_ok=True)

        prefix = "sqlite+aiosqlite:///"
        if self.database.url.startswith(prefix):
            db_path = self.database.url[len(prefix):]
            if db_path and db_path != ":memory:":
                Path(db_path).parent.mkdir(parents=True, exist_ok=True)


# 全局配置实例
settings = Config.load()
