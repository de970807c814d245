"""Background workers."""

from .dispatch_loop import DispatchLoop, InFlightGuard
from .generation_worker import GenerationWorker

__all__ = ["DispatchLoop", "GenerationWorker", "InFlightGuard"]
