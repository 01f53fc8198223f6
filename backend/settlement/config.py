"""
应用配置模块
"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """应用配置"""

    # 数据库配置
    database_url: str = "sqlite+aiosqlite:///./settlement.db"

    # SQLAlchemy 日志（默认关闭；需要排查 SQL 时再打开）
    sqlalchemy_echo: bool = False

    # 日志级别
    log_level: str = "INFO"

    # 缓存配置：memory（进程内）/ redis（分布式）
    cache_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    cache_prefix: str = "api_cache"
    cache_ttl: int = 300
    cache_max_entries: int = 10000

    # 查询优化器
    enable_query_cache: bool = True
    enable_cursor_pagination: bool = True
    default_page_size: int = 20
    max_page_size: int = 100

    # 结算计算
    usd_to_cny_rate: float = 7.2
    arrival_window_days: int = 30
    settlement_concurrency: int = 4

    # 定时结算 Worker（多进程部署时可关闭，改用单独进程或外部调度）
    enable_settlement_worker: bool = False
    settlement_worker_interval: float = 3600.0

    # 原始数据“近期已更新”判定窗口（小时）
    freshness_window_hours: int = 3

    # 服务配置
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    debug: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """获取应用配置（缓存）"""
    return Settings()
