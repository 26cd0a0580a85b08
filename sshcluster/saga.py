"""Ordered multi-step workflows with an explicit partial-failure boundary.

A saga runs its steps one at a time, in order. A failing fatal step stops the
run; the report then says exactly which steps completed, which failed and
which never ran. Best-effort steps log their failure and the run continues.
Nothing is rolled back.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from sshcluster.logging_config import get_logger

logger = get_logger(__name__)


class StepStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    WARNING = "warning"
    NOT_RUN = "not-run"


@dataclass
class Step:
    name: str
    action: Callable[[], None]
    target: str | None = None
    best_effort: bool = False

    def describe(self) -> str:
        return f"{self.name} ({self.target})" if self.target else self.name


@dataclass
class StepOutcome:
    name: str
    target: str | None
    status: StepStatus
    error: str | None = None


@dataclass
class SagaReport:
    name: str
    outcomes: list[StepOutcome] = field(default_factory=list)

    def add(self, outcome: StepOutcome) -> None:
        self.outcomes.append(outcome)

    def with_status(self, status: StepStatus) -> list[StepOutcome]:
        return [o for o in self.outcomes if o.status == status]

    @property
    def succeeded(self) -> bool:
        return not self.with_status(StepStatus.FAILED)

    @property
    def failed_step(self) -> StepOutcome | None:
        failed = self.with_status(StepStatus.FAILED)
        return failed[0] if failed else None

    def summary(self) -> str:
        counts = {status: len(self.with_status(status)) for status in StepStatus}
        return " ".join(f"{status.name}={count}" for status, count in counts.items())


class Saga:
    """A named, ordered list of steps."""

    def __init__(self, name: str):
        self.name = name
        self.steps: list[Step] = []
        self.report = SagaReport(name)

    def add(
        self,
        name: str,
        action: Callable[[], None],
        target: str | None = None,
        best_effort: bool = False,
    ) -> "Saga":
        self.steps.append(Step(name, action, target, best_effort))
        return self

    def run(self) -> SagaReport:
        """Run every step in order.

        Raises:
            Exception: The first fatal step's error, unchanged apart from a note
                naming the step; ``self.report`` holds the outcome of every step.
        """
        self.report = SagaReport(self.name)
        for index, step in enumerate(self.steps):
            logger.debug(f"[{self.name}] step {index + 1}/{len(self.steps)}: {step.describe()}")
            try:
                step.action()
            except Exception as e:
                if step.best_effort:
                    logger.warning(f"[{self.name}] {step.describe()} failed, continuing: {e}")
                    self.report.add(StepOutcome(step.name, step.target, StepStatus.WARNING, str(e)))
                    continue
                logger.error(f"[{self.name}] {step.describe()} failed: {e}")
                self.report.add(StepOutcome(step.name, step.target, StepStatus.FAILED, str(e)))
                for remaining in self.steps[index + 1 :]:
                    self.report.add(
                        StepOutcome(remaining.name, remaining.target, StepStatus.NOT_RUN)
                    )
                e.add_note(
                    f"{self.name}: step {step.describe()!r} failed after "
                    f"{len(self.report.with_status(StepStatus.OK))} completed step(s)"
                )
                raise
            self.report.add(StepOutcome(step.name, step.target, StepStatus.OK))
        logger.debug(f"[{self.name}] finished: {self.report.summary()}")
        return self.report
