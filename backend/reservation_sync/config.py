"""
应用配置
从环境变量读取配置，包含外部预订渠道的默认连接参数
"""
from typing import Optional
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "Reservation Sync"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./reservation_sync.db"

    # 渠道身份（OTA 物业号 / 渠道管理器酒店号）
    PROPERTY_ID: str = ""
    HOTEL_ID: str = ""

    # 外部调用超时（秒）
    ADAPTER_TIMEOUT: float = 30.0
    HEALTH_CHECK_TIMEOUT: float = 10.0

    # 各类渠道的拉取窗口（天）
    PMS_WINDOW_DAYS: int = 30
    OTA_WINDOW_DAYS: int = 60
    CHANNEL_MANAGER_WINDOW_DAYS: int = 30
    DIRECT_WINDOW_DAYS: int = 30

    # 手动同步等待同一渠道进行中周期的最长时间（秒）
    SYNC_LOCK_TIMEOUT: float = 60.0

    # 功能开关
    SCHEDULER_ENABLED: bool = True
    SEED_DEFAULT_SOURCES: bool = True

    # 默认渠道配置
    OPERA_PMS_ENDPOINT: str = "https://api.oracle.com/hospitality/pms/v1"
    OPERA_API_KEY: Optional[str] = None
    BOOKING_COM_ENDPOINT: str = "https://distribution-xml.booking.com/json/bookings.getBookings"
    BOOKING_COM_API_KEY: Optional[str] = None
    BOOKING_COM_SECRET: Optional[str] = None

    model_config = ConfigDict(env_file=".env", case_sensitive=True)


# 全局设置实例
settings = Settings()
