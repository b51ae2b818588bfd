# Ontology Models
from reservation_sync.models.ontology import (
    SourceConfig, Room, Reservation, HousekeepingTask, SyncLog
)

__all__ = [
    'SourceConfig', 'Room', 'Reservation', 'HousekeepingTask', 'SyncLog'
]
