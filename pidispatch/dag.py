"""Dependency batching for manifest fan-outs.

Manifest tasks may name other tasks in `depends_on`. Rather than building a full graph,
`dependency_batches` repeatedly scans the remaining tasks and yields successive batches whose
prerequisites are satisfied. Each batch is then fanned out as its own join-all barrier.

Batching semantics
- A task is runnable when `is_done(dep)` is truthy for every name in `task.depends_on`.
- Batches are greedy frontiers: each task appears in the earliest batch whose dependencies
  are satisfied at the moment the batch is computed. `is_done()` is called lazily, so the
  caller updates its done-set between batches.
- Within a batch, ordering follows the caller's input order.
- If tasks remain but none is runnable, a `RuntimeError` is raised instead of spinning: either
  a dependency cycle or a prerequisite that will never complete.
- If `is_done(dep)` raises `KeyError`, the dependency is treated as not done.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from typing import Protocol, TypeVar


class Schedulable(Protocol):
    @property
    def name(self) -> str: ...

    @property
    def depends_on(self) -> Sequence[str]: ...


T = TypeVar("T", bound=Schedulable)


def dependency_batches(items: Sequence[T], *, is_done: Callable[[str], bool]) -> Iterator[list[T]]:
    """Yield batches of items whose dependencies are satisfied."""
    remaining: dict[str, T] = {i.name: i for i in items}

    while remaining:
        ready = [
            item
            for item in remaining.values()
            if all(_safe_is_done(is_done, d) for d in (item.depends_on or []))
        ]
        if not ready:
            stuck = sorted(remaining.keys())
            raise RuntimeError(f"No runnable tasks; dependency deadlock or unmet prerequisite(s): {stuck}")

        ready_names = {i.name for i in ready}
        batch = [i for i in items if i.name in ready_names]
        yield batch

        for item in batch:
            remaining.pop(item.name, None)


def _safe_is_done(is_done: Callable[[str], bool], dep: str) -> bool:
    try:
        return bool(is_done(dep))
    except KeyError:
        return False
