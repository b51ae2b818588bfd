"""
集成异常定义

配置类错误同时继承 ValueError，路由层沿用 ValueError -> HTTP 4xx 的转换方式。
"""
from typing import Optional


class IntegrationError(Exception):
    """集成错误基类"""


class SourceNotFoundError(IntegrationError, ValueError):
    """未配置的渠道名称"""

    def __init__(self, source_name: str):
        self.source_name = source_name
        super().__init__(f"Booking source configuration not found: {source_name}")


class SourceInactiveError(IntegrationError, ValueError):
    """渠道已停用"""

    def __init__(self, source_name: str):
        self.source_name = source_name
        super().__init__(f"Booking source is not active: {source_name}")


class UnsupportedSourceKindError(IntegrationError, ValueError):
    """没有对应类型的适配器"""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Unsupported booking source kind: {kind}")


class SourceTransportError(IntegrationError):
    """外部接口返回非 2xx 或请求超时，本渠道本次同步周期失败"""

    def __init__(self, source_name: str, message: str, status_code: Optional[int] = None):
        self.source_name = source_name
        self.status_code = status_code
        super().__init__(message)


class SyncInProgressError(IntegrationError):
    """同一渠道已有同步周期在执行"""

    def __init__(self, source_name: str):
        self.source_name = source_name
        super().__init__(f"A sync cycle is already running for {source_name}")


class RecordRejectedError(IntegrationError):
    """单条外部记录无法标准化"""

    def __init__(self, external_id: Optional[str], reason: str):
        self.external_id = external_id
        self.reason = reason
        super().__init__(f"Rejected record {external_id or '<unknown>'}: {reason}")
