"""Session state module.

Short-lived per-chat and per-sender state shared by concurrent dispatches.
"""

from .state import (
    ActivityStat,
    ActivityStore,
    ChatLogStore,
    MemoryActivityStore,
    MemoryChatLogStore,
    MemoryPendingRequestStore,
    PendingRequestStore,
    SessionStateStore,
    TenantRegistry,
)

__all__ = [
    "ActivityStat",
    "ActivityStore",
    "ChatLogStore",
    "MemoryActivityStore",
    "MemoryChatLogStore",
    "MemoryPendingRequestStore",
    "PendingRequestStore",
    "SessionStateStore",
    "TenantRegistry",
]
