"""
渠道适配器注册表
"""
from typing import Dict, Type

from reservation_sync.adapters.base import SourceAdapter
from reservation_sync.adapters.pms import PMSAdapter
from reservation_sync.adapters.ota import OTAAdapter
from reservation_sync.adapters.channel_manager import ChannelManagerAdapter
from reservation_sync.adapters.direct import DirectBookingAdapter
from reservation_sync.exceptions import UnsupportedSourceKindError
from reservation_sync.models.ontology import SourceKind

ADAPTER_REGISTRY: Dict[SourceKind, Type[SourceAdapter]] = {
    SourceKind.PMS: PMSAdapter,
    SourceKind.OTA: OTAAdapter,
    SourceKind.CHANNEL_MANAGER: ChannelManagerAdapter,
    SourceKind.DIRECT: DirectBookingAdapter,
}


def get_adapter(kind, **kwargs) -> SourceAdapter:
    """按渠道类型创建适配器"""
    try:
        adapter_cls = ADAPTER_REGISTRY[SourceKind(kind)]
    except (KeyError, ValueError):
        raise UnsupportedSourceKindError(str(kind))
    return adapter_cls(**kwargs)


__all__ = [
    "SourceAdapter", "PMSAdapter", "OTAAdapter", "ChannelManagerAdapter",
    "DirectBookingAdapter", "ADAPTER_REGISTRY", "get_adapter",
]
