"""Transport orchestration.

The supervisor decides which producer (push channel or poll scheduler)
feeds the state store at any moment and reports connection health.
"""

from pytablesync.sync.poll import PollScheduler, backoff_delay, interval_for_phase
from pytablesync.sync.push import PushChannel, PushSubscription
from pytablesync.sync.supervisor import ConnectionSupervisor, SupervisorState

__all__ = [
    "ConnectionSupervisor",
    "PollScheduler",
    "PushChannel",
    "PushSubscription",
    "SupervisorState",
    "backoff_delay",
    "interval_for_phase",
]
