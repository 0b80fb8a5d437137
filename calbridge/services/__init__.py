"""Calendar services: orchestration, availability, conflicts and sync

- calendar_service.py: fan-out across connected providers
- free_busy.py: aggregated availability and slot suggestions
- conflicts.py: overlap detection and next-free-slot search
- sync.py: cross-provider event matching, comparison and copy

Services receive their collaborators explicitly and hold no state between calls.
"""

from calbridge.services.calendar_service import CalendarService
from calbridge.services.conflicts import ConflictDetector
from calbridge.services.free_busy import FreeBusyService
from calbridge.services.sync import SyncService

__all__ = ["CalendarService", "ConflictDetector", "FreeBusyService", "SyncService"]
