"""Step grouping and loop re-entry calculation.

Consecutive ``parallel: true`` steps form one concurrent batch; every other
step is its own sequential group. A loop re-enters at the group that owns
the step its condition references, so a parallel batch is always re-run as
a whole.
"""

from dataclasses import dataclass, field

from agentloop.core.models import StepConfig
from agentloop.core.template import referenced_step


@dataclass
class StepGroup:
    """One scheduling unit: a sequential singleton or a parallel batch."""

    parallel: bool
    steps: list[StepConfig] = field(default_factory=list)
    start_index: int = 0  # Position of the first member in the flat step list

    @property
    def end_index(self) -> int:
        return self.start_index + len(self.steps)

    @property
    def names(self) -> list[str]:
        return [step.name for step in self.steps]

    def contains_index(self, index: int) -> bool:
        return self.start_index <= index < self.end_index


def group_steps(steps: list[StepConfig]) -> list[StepGroup]:
    """Partition steps into ordered groups.

    A maximal run of parallel-flagged steps becomes one group, including a
    run of length one. Concatenating the groups reproduces ``steps``.
    """
    groups: list[StepGroup] = []
    i = 0
    while i < len(steps):
        if steps[i].parallel:
            start = i
            batch: list[StepConfig] = []
            while i < len(steps) and steps[i].parallel:
                batch.append(steps[i])
                i += 1
            groups.append(StepGroup(parallel=True, steps=batch, start_index=start))
        else:
            groups.append(StepGroup(parallel=False, steps=[steps[i]], start_index=i))
            i += 1
    return groups


def find_reentry_index(
    steps: list[StepConfig],
    groups: list[StepGroup],
    condition: str,
) -> int:
    """Flat step index where iterations after the first resume.

    Returns the start index of the group containing the step referenced by
    ``condition``. Unrecognized conditions and unknown steps restart from 0.
    """
    name = referenced_step(condition)
    if name is None:
        return 0

    ref_index = next((i for i, step in enumerate(steps) if step.name == name), -1)
    if ref_index < 0:
        return 0

    for group in groups:
        if group.contains_index(ref_index):
            return group.start_index
    return ref_index
