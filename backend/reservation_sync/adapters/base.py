"""
渠道适配器契约

每种外部系统类型（pms / ota / channel_manager / direct）一个适配器：
按时间窗口拉取原始预订，并把该供应商已知的各种字段写法映射为 CanonicalBooking。
其余模块只接触 CanonicalBooking。
"""
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from reservation_sync.config import settings
from reservation_sync.exceptions import RecordRejectedError, SourceTransportError
from reservation_sync.models.ontology import SourceConfig, SourceKind
from reservation_sync.models.schemas import CanonicalBooking

logger = logging.getLogger(__name__)

_MISSING = object()


def lookup(raw: Dict[str, Any], path: str) -> Any:
    """按点号路径取值（如 "guest.first_name"），任一层缺失返回 None"""
    current: Any = raw
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part, _MISSING)
        if current is _MISSING:
            return None
    return current


def first_present(raw: Dict[str, Any], *paths: str, default: Any = None) -> Any:
    """按优先级依次尝试多个字段名，返回第一个非空值"""
    for path in paths:
        value = lookup(raw, path)
        if value is not None and value != "":
            return value
    return default


def join_name(*parts: Any) -> str:
    return " ".join(str(p).strip() for p in parts if p).strip()


def to_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    return int(value)


class SourceAdapter(ABC):
    """
    外部预订系统适配器

    Args:
        client_factory: 创建 httpx.Client 的工厂，接收 timeout 参数；测试中可注入 MockTransport
        clock: 返回当前时间的函数，用于计算拉取窗口
    """

    kind: SourceKind

    def __init__(
        self,
        client_factory: Optional[Callable[..., httpx.Client]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._client_factory = client_factory or (lambda timeout: httpx.Client(timeout=timeout))
        self._clock = clock or datetime.now

    # ---------- 子类实现 ----------

    @property
    @abstractmethod
    def window_days(self) -> int:
        """向后拉取的天数"""

    @abstractmethod
    def auth_headers(self, config: SourceConfig) -> Dict[str, str]:
        """认证请求头"""

    @abstractmethod
    def build_request(self, config: SourceConfig, start: datetime, end: datetime) -> Tuple[str, str, Dict[str, Any]]:
        """
        构造拉取请求

        Returns:
            (method, url, httpx 请求参数)
        """

    @abstractmethod
    def extract_records(self, payload: Any) -> List[Dict[str, Any]]:
        """从响应体中取出原始预订列表"""

    @abstractmethod
    def map_fields(self, raw: Dict[str, Any]) -> Dict[str, Any]:
        """原始预订 -> CanonicalBooking 字段字典（含字段优先级逻辑）"""

    # ---------- 公共流程 ----------

    def fetch_window(self) -> Tuple[datetime, datetime]:
        start = self._clock()
        return start, start + timedelta(days=self.window_days)

    def fetch_raw(self, config: SourceConfig) -> List[Dict[str, Any]]:
        """
        拉取原始预订

        非 2xx、超时和网络错误都抛出 SourceTransportError，由编排器记录并计入本周期。
        """
        start, end = self.fetch_window()
        method, url, options = self.build_request(config, start, end)
        headers = {"Content-Type": "application/json", **self.auth_headers(config)}

        try:
            with self._client_factory(timeout=settings.ADAPTER_TIMEOUT) as client:
                response = client.request(method, url, headers=headers, **options)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            raise SourceTransportError(
                config.name,
                f"{self.kind.value} API error: {status_code} {e.response.reason_phrase}",
                status_code=status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise SourceTransportError(config.name, f"{self.kind.value} API timeout: {e}") from e
        except httpx.HTTPError as e:
            raise SourceTransportError(config.name, f"{self.kind.value} API request failed: {e}") from e
        except ValueError as e:
            raise SourceTransportError(config.name, f"{self.kind.value} API returned invalid JSON: {e}") from e

        try:
            records = self.extract_records(payload)
        except (AttributeError, TypeError) as e:
            raise SourceTransportError(config.name, f"{self.kind.value} API returned an unexpected payload: {e}") from e
        if not isinstance(records, list):
            raise SourceTransportError(
                config.name, f"{self.kind.value} API returned {type(records).__name__} instead of a booking list"
            )
        logger.info(f"Fetched {len(records)} raw bookings from {config.name} ({method} {url})")
        return records

    def normalize(self, raw: Dict[str, Any]) -> CanonicalBooking:
        """单条原始预订标准化，失败抛出 RecordRejectedError"""
        if not isinstance(raw, dict):
            raise RecordRejectedError(None, f"expected an object, got {type(raw).__name__}")

        external_id = None
        try:
            fields = self.map_fields(raw)
            external_id = fields.get("external_id")
            return CanonicalBooking(**fields)
        except ValidationError as e:
            reasons = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'booking'}: {err['msg']}" for err in e.errors()
            )
            raise RecordRejectedError(external_id, reasons) from e
        except (KeyError, TypeError, ValueError, ArithmeticError) as e:
            raise RecordRejectedError(external_id, str(e)) from e

    def fetch(self, config: SourceConfig) -> List[CanonicalBooking]:
        """拉取并标准化；任一记录无法标准化即抛出"""
        return [self.normalize(raw) for raw in self.fetch_raw(config)]

    def health_check(self, config: SourceConfig, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        轻量连通性探测，不读写预订数据

        Returns:
            {"success": bool, "message": str, "response_time": 毫秒}
        """
        started = time.monotonic()
        headers = {"Content-Type": "application/json", **self.auth_headers(config)}
        try:
            with self._client_factory(timeout=timeout or settings.HEALTH_CHECK_TIMEOUT) as client:
                response = client.get(f"{config.endpoint}/health", headers=headers)
        except httpx.HTTPError as e:
            return {
                "success": False,
                "message": str(e) or e.__class__.__name__,
                "response_time": int((time.monotonic() - started) * 1000),
            }

        response_time = int((time.monotonic() - started) * 1000)
        if response.is_success:
            return {"success": True, "message": "Connection successful", "response_time": response_time}
        return {
            "success": False,
            "message": f"HTTP {response.status_code}: {response.reason_phrase}",
            "response_time": response_time,
        }
