"""Job-state core: registry, fallback poller and command surface."""

from leadsync.jobs.registry import JobRecord, JobRegistry, RegistryChange, RegistryListener
from leadsync.jobs.poller import FallbackPoller
from leadsync.jobs.manager import JobsManager

__all__ = [
    "FallbackPoller",
    "JobRecord",
    "JobRegistry",
    "JobsManager",
    "RegistryChange",
    "RegistryListener",
]
