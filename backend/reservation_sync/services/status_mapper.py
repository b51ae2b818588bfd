"""
状态映射 - 各供应商状态词汇 -> 内部预订状态
"""
import logging
from typing import Dict, Optional

from reservation_sync.models.ontology import ReservationStatus

logger = logging.getLogger(__name__)


VENDOR_STATUS_MAP: Dict[str, ReservationStatus] = {
    'confirmed': ReservationStatus.CONFIRMED,
    'active': ReservationStatus.CONFIRMED,
    'booked': ReservationStatus.CONFIRMED,
    'reserved': ReservationStatus.CONFIRMED,
    'new': ReservationStatus.CONFIRMED,
    'cancelled': ReservationStatus.CANCELLED,
    'canceled': ReservationStatus.CANCELLED,
    'modified': ReservationStatus.MODIFIED,
    'updated': ReservationStatus.MODIFIED,
    'checked_in': ReservationStatus.CHECKED_IN,
    'checkedin': ReservationStatus.CHECKED_IN,
    'in_house': ReservationStatus.CHECKED_IN,
    'checked_out': ReservationStatus.CHECKED_OUT,
    'checkedout': ReservationStatus.CHECKED_OUT,
    'departed': ReservationStatus.CHECKED_OUT,
}

# 未识别的状态按有效预订处理，供应商新增状态不会中断同步
DEFAULT_STATUS = ReservationStatus.CONFIRMED


def map_status(vendor_status: Optional[str]) -> ReservationStatus:
    """
    供应商状态 -> 内部状态（不区分大小写）

    未识别或为空的状态返回 confirmed，不抛异常。
    """
    key = (vendor_status or "").strip().lower()
    status = VENDOR_STATUS_MAP.get(key)
    if status is None:
        logger.warning(f"Unrecognized vendor status {vendor_status!r}, defaulting to {DEFAULT_STATUS.value}")
        return DEFAULT_STATUS
    return status
