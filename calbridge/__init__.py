"""calbridge: Unified calendar access for Google, Microsoft 365 and Exchange

Philosophy:
    People rarely live in one calendar. Work meetings sit in Exchange, family
    plans in Google, the side project in Microsoft 365. calbridge puts all of
    them behind one event model so availability and conflicts are answered
    across every account at once, not one calendar at a time.

Design Principles:
    1. Live Queries: Nothing is stored; every answer comes from the providers
    2. Partial Success: One broken account never hides the others
    3. Explainable Matching: Every sync match carries its scoring factors
    4. Safe Copies: Copied events never notify attendees

Components:
    models.py: Data models (CalendarEvent, Calendar, BusySlot, FreeSlot, ...)
    errors.py: Error taxonomy shared by providers and services
    config.py: YAML + environment configuration
    datetime_utils.py: Zoned parsing and interval arithmetic
    recurrence.py: Recurrence patterns and RRULE conversion
    providers/: Google Calendar, Microsoft Graph and Exchange EWS adapters
    services/: Orchestrator, availability, conflicts and sync
    cli.py: Command-line access to every operation
"""

from pathlib import Path


# Path constants
PROJECT_ROOT = Path(__file__).parent.parent
ARGS_DIR = PROJECT_ROOT / "args"

__version__ = "0.1.0"
