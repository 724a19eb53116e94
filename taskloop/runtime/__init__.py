"""
Runtime substrate for worker agents.

- store: Durable per-worker state (JSON files or in-memory)
- scheduler: Durable timers that reactivate workers
- host: Worker registry and timer dispatch
"""

from taskloop.runtime.store import StateStore, FileStateStore, MemoryStateStore
from taskloop.runtime.scheduler import Scheduler, InstanceScheduler, Schedule
from taskloop.runtime.host import AgentHost

__all__ = [
    "StateStore",
    "FileStateStore",
    "MemoryStateStore",
    "Scheduler",
    "InstanceScheduler",
    "Schedule",
    "AgentHost",
]
