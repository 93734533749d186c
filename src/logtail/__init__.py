"""
logtail: tails CloudWatch log streams with durable per-stream checkpoints.

Each discovered stream gets its own Tailer task that resumes from the cursor
in the offset store, hands events to the service's sink, and saves the
advanced cursor after every delivered batch.
"""

from logtail.models import Event, LogSource
from logtail.supervisor import Supervisor
from logtail.tailer import Tailer, TailerState

__version__ = "0.1.0"

__all__ = [
    "Event",
    "LogSource",
    "Supervisor",
    "Tailer",
    "TailerState",
]
