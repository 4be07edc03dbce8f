"""
Calendar services package.

Services:
- connection_registry: OAuth connect/disconnect and per-connection settings
- token_manager: single-flight access-token refresh
- sync_engine: mirror external events into synced_work_events
- auto_block: keep work-event blocked time slots in step with the mirror
- conflict_detector: flag lesson clashes, validate windows, statistics
- slot_finder: free lesson slots around blocked time
- resolution: record and apply conflict decisions
"""

from workblock.services.calendar.auto_block import AutoBlockReconciler
from workblock.services.calendar.conflict_detector import ConflictDetector
from workblock.services.calendar.connection_registry import ConnectionRegistry
from workblock.services.calendar.resolution import ConflictState, ResolutionWorkflow
from workblock.services.calendar.slot_finder import SlotFinder, compute_available_slots
from workblock.services.calendar.sync_engine import SyncEngine
from workblock.services.calendar.token_manager import TokenManager

__all__ = [
    "AutoBlockReconciler",
    "ConflictDetector",
    "ConnectionRegistry",
    "ConflictState",
    "ResolutionWorkflow",
    "SlotFinder",
    "SyncEngine",
    "TokenManager",
    "compute_available_slots",
]
