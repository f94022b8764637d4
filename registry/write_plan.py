"""
BrickLedger - Ordered Write Plans

The key-value store offers no multi-key transactions, so related writes are
expressed as an ordered plan of named steps. Steps run in order; the first
failure stops the plan and raises PartialWriteFailure listing the steps that
already landed. Nothing is rolled back.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from .exceptions import PartialWriteFailure


@dataclass
class WriteStep:
    """One named write in a plan."""
    name: str
    action: Callable[[], Any]
    completed: bool = False


@dataclass
class WritePlan:
    """Ordered, best-effort sequence of key-value writes."""
    name: str
    steps: List[WriteStep] = field(default_factory=list)
    failed_step: Optional[str] = None

    def __post_init__(self):
        self.logger = logging.getLogger(__name__)

    def add(self, name: str, action: Callable[[], Any]) -> 'WritePlan':
        """Append a step; returns the plan for chaining."""
        self.steps.append(WriteStep(name=name, action=action))
        return self

    @property
    def completed_steps(self) -> List[str]:
        return [step.name for step in self.steps if step.completed]

    @property
    def is_complete(self) -> bool:
        return all(step.completed for step in self.steps)

    def execute(self) -> List[str]:
        """
        Run all pending steps in order.

        Already completed steps are skipped, so a plan can be re-executed after
        a transient failure.

        Returns:
            Names of all completed steps

        Raises:
            PartialWriteFailure: If a step raises
        """
        for step in self.steps:
            if step.completed:
                continue
            try:
                step.action()
            except Exception as e:
                self.failed_step = step.name
                self.logger.error(
                    f"Write plan {self.name} failed at step '{step.name}' "
                    f"after {len(self.completed_steps)} completed step(s): {e}"
                )
                raise PartialWriteFailure(self.name, self.completed_steps, step.name, e) from e
            step.completed = True

        self.failed_step = None
        self.logger.debug(f"Write plan {self.name} completed {len(self.steps)} step(s)")
        return self.completed_steps
