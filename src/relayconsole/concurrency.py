from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from contextvars import copy_context
from dataclasses import dataclass
from typing import Any, Callable


@dataclass(frozen=True)
class TaskOutcome:
    index: int
    result: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _run_one(index: int, task: Callable[[], Any]) -> TaskOutcome:
    try:
        return TaskOutcome(index=index, result=task())
    except Exception as exc:
        return TaskOutcome(index=index, error=exc)


def run_indexed_tasks_settled(
    tasks: list[tuple[int, Callable[[], Any]]],
    *,
    max_workers: int,
) -> list[TaskOutcome]:
    """Run every task to completion and report each outcome independently.

    One task failing never cancels the others. Outcomes come back sorted by
    index, whatever order they finished in.
    """
    if not tasks:
        return []
    if max_workers <= 1 or len(tasks) == 1:
        return sorted(
            (_run_one(index, task) for index, task in tasks),
            key=lambda outcome: outcome.index,
        )

    outcomes: dict[int, TaskOutcome] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = [
            executor.submit(copy_context().run, _run_one, index, task)
            for index, task in tasks
        ]
        for future in as_completed(futures):
            outcome = future.result()
            outcomes[outcome.index] = outcome

    return [outcomes[index] for index in sorted(outcomes)]
