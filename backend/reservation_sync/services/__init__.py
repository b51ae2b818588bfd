# Sync Services
# SyncOrchestrator 依赖 adapters，按模块路径导入：reservation_sync.services.sync_orchestrator
from reservation_sync.services.status_mapper import map_status
from reservation_sync.services.availability_service import AvailabilityChecker
from reservation_sync.services.room_assignment import RoomAssignmentResolver
from reservation_sync.services.side_effect_dispatcher import SideEffectDispatcher
from reservation_sync.services.reconciliation_service import ReconciliationService

__all__ = [
    'map_status', 'AvailabilityChecker', 'RoomAssignmentResolver',
    'SideEffectDispatcher', 'ReconciliationService'
]
