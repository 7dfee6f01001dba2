# Jobs Package - Periodic engine workers
from .base import PeriodicWorker
from .schedule_worker import ScheduleWorker
from .repair_worker import RepairWorker
from .refresh_worker import RefreshWorker
from .outbox_dispatcher import OutboxDispatcher
from .scheduler import EngineScheduler, get_scheduler, start_scheduler, stop_scheduler

__all__ = [
    "PeriodicWorker",
    "ScheduleWorker",
    "RepairWorker",
    "RefreshWorker",
    "OutboxDispatcher",
    "EngineScheduler",
    "get_scheduler",
    "start_scheduler",
    "stop_scheduler",
]
