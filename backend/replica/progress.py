"""
Lifecycle and progress reporting for a clone run
"""

from typing import Callable, Dict, List, Optional, Tuple

from .errors import InvalidTransition
from .events import RunEventEmitter
from .models import CloneRun, RunStatus, utcnow

ProgressCallback = Callable[[int, str], None]

# No edges leave COMPLETED or ERROR
TRANSITIONS: Dict[RunStatus, set] = {
    RunStatus.PENDING: {RunStatus.ANALYZING, RunStatus.ERROR},
    RunStatus.ANALYZING: {RunStatus.CLONING, RunStatus.COMPLETED, RunStatus.ERROR},
    RunStatus.CLONING: {RunStatus.COMPLETED, RunStatus.ERROR},
    RunStatus.COMPLETED: set(),
    RunStatus.ERROR: set(),
}

# Stages run in this order; each owns a contiguous progress range
STAGES: List[Tuple[str, int, int]] = [
    ("acquire", 0, 25),
    ("detect", 25, 50),
    ("assets", 50, 70),
    ("materialize", 70, 90),
    ("analyze", 90, 100),
]
STAGE_RANGES = {name: (start, end) for name, start, end in STAGES}


class ProgressTracker:
    """
    Owns status, progress and step text of one run.

    Progress is clamped so it never decreases and never exceeds 100. Stages
    must be entered in STAGES order.
    """

    def __init__(self, run: CloneRun, events: RunEventEmitter,
                 on_progress: Optional[ProgressCallback] = None):
        self.run = run
        self.events = events
        self.stage: Optional[str] = None
        self._callbacks: List[ProgressCallback] = []
        if on_progress:
            self._callbacks.append(on_progress)

    def add_callback(self, callback: ProgressCallback):
        self._callbacks.append(callback)

    @property
    def is_terminal(self) -> bool:
        return not TRANSITIONS[self.run.status]

    def transition(self, status: RunStatus):
        current = self.run.status
        if status == current:
            return
        if status not in TRANSITIONS[current]:
            raise InvalidTransition(f"Cannot move run from {current.value} to {status.value}")
        self.run.status = status
        if status == RunStatus.COMPLETED:
            self.run.completed_at = utcnow()

    def enter_stage(self, stage: str, step: str, message: Optional[str] = None):
        if stage not in STAGE_RANGES:
            raise ValueError(f"Unknown stage: {stage}")
        order = [name for name, _, _ in STAGES]
        if self.stage is not None and order.index(stage) <= order.index(self.stage):
            raise InvalidTransition(f"Stage {stage} cannot follow {self.stage}")

        self.stage = stage
        start, _ = STAGE_RANGES[stage]
        self.report(start, step)
        self.events.info(stage, message or step)

    def report(self, percent: int, step: str):
        """Report progress inside the current stage's range"""
        if self.is_terminal:
            raise InvalidTransition(f"Run is already {self.run.status.value}")
        if self.stage is not None:
            start, end = STAGE_RANGES[self.stage]
            percent = max(start, min(end, percent))
        percent = max(self.run.progress, min(100, int(percent)))

        self.run.progress = percent
        self.run.current_step = step
        for callback in list(self._callbacks):
            callback(percent, step)

    def complete(self, step: str = "Clone completed"):
        self.report(100, step)
        self.transition(RunStatus.COMPLETED)

    def fail(self, error: BaseException):
        """Move to ERROR, freezing progress at its last value"""
        if self.is_terminal:
            return
        message = str(error) or error.__class__.__name__
        self.run.status = RunStatus.ERROR
        self.run.current_step = f"Error: {message}"
        self.events.error(self.stage or "clone", message, error_type=error.__class__.__name__)
        for callback in list(self._callbacks):
            callback(self.run.progress, self.run.current_step)
