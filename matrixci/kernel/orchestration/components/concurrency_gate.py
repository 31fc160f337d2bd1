"""Milestone-style concurrency gate for runs of the same branch.

For each branch the gate remembers, per checkpoint ordinal, the newest run
sequence that passed it. When a run passes a checkpoint, every older
in-flight run of the branch that has not yet passed it is superseded; an
older run arriving at a checkpoint a newer run already passed is superseded
on arrival. Supersession marks the run ``ABORTED`` with reason
``"superseded"``; the stage executor observes it at the aborted run's next
checkpoint, so in-flight tasks are never killed mid-way.

An *exclusive* checkpoint (the one in front of Deploy) is additionally held
by the run that passed it until that run leaves the stage. A run arriving
while it is held waits; among waiters the newest sequence goes first.

Consequence: for a branch, runs pass every checkpoint in increasing sequence
order, so an older run can never reach Deploy after a newer one did, and at
most one run of the branch is inside Deploy at a time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from matrixci.kernel.domain.run import Run
from matrixci.kernel.exceptions import OrchestratorError
from matrixci.kernel.logging import get_logger
from matrixci.kernel.orchestration.events import RunSuperseded

logger = get_logger(__name__)

SupersededCallback = Callable[[RunSuperseded], Awaitable[Any]]


@dataclass(slots=True)
class _BranchState:
    in_flight: dict[int, Run] = field(default_factory=dict)
    # checkpoint ordinal -> newest sequence that passed it
    newest_passed: dict[int, int] = field(default_factory=dict)
    # run sequence -> highest checkpoint ordinal it passed
    progress: dict[int, int] = field(default_factory=dict)
    # exclusive checkpoint ordinal -> sequence inside the stage behind it
    holders: dict[int, int] = field(default_factory=dict)
    # exclusive checkpoint ordinal -> sequences waiting to pass it
    waiting: dict[int, set[int]] = field(default_factory=dict)


class ConcurrencyGate:
    """Per-branch milestone state shared by every run under one coordinator."""

    def __init__(self, on_superseded: SupersededCallback | None = None) -> None:
        self._branches: dict[str, _BranchState] = {}
        self._lock = asyncio.Lock()
        self._changed = asyncio.Condition(self._lock)
        self._on_superseded = on_superseded

    def _state(self, branch: str) -> _BranchState:
        return self._branches.setdefault(branch, _BranchState())

    async def admit(self, run: Run) -> None:
        """Register a run as in flight for its branch."""
        async with self._lock:
            state = self._state(run.branch)
            if run.sequence in state.in_flight:
                raise OrchestratorError(f"Run '{run.run_id}' is already in flight")
            state.in_flight[run.sequence] = run
            state.progress.setdefault(run.sequence, 0)

    async def release(self, run: Run) -> None:
        """Forget a finished run; checkpoint history of the branch is kept."""
        async with self._changed:
            state = self._state(run.branch)
            state.in_flight.pop(run.sequence, None)
            state.progress.pop(run.sequence, None)
            for ordinal, holder in list(state.holders.items()):
                if holder == run.sequence:
                    del state.holders[ordinal]
            self._changed.notify_all()

    async def leave(self, run: Run, ordinal: int) -> None:
        """Give up the exclusive checkpoint ``ordinal`` held by ``run``."""
        async with self._changed:
            state = self._state(run.branch)
            if state.holders.get(ordinal) == run.sequence:
                del state.holders[ordinal]
                self._changed.notify_all()

    def in_flight(self, branch: str) -> list[Run]:
        state = self._branches.get(branch)
        return sorted(state.in_flight.values(), key=lambda r: r.sequence) if state else []

    def newest_passed(self, branch: str, ordinal: int) -> int | None:
        state = self._branches.get(branch)
        return state.newest_passed.get(ordinal) if state else None

    def holder(self, branch: str, ordinal: int) -> int | None:
        state = self._branches.get(branch)
        return state.holders.get(ordinal) if state else None

    async def pass_checkpoint(self, run: Run, ordinal: int, exclusive: bool = False) -> bool:
        """Try to move ``run`` past checkpoint ``ordinal``.

        With ``exclusive`` the call first waits until no other run of the
        branch holds the checkpoint, and on success the run holds it until
        :meth:`leave` or :meth:`release`.

        Returns
        -------
        bool
            True if the run may continue; False if it is (now) superseded and
            must skip its remaining stages.
        """
        superseded: list[RunSuperseded] = []

        async with self._changed:
            if run.superseded:
                return False
            state = self._state(run.branch)
            if run.sequence not in state.in_flight:
                raise OrchestratorError(f"Run '{run.run_id}' was not admitted to the gate")

            if exclusive and not await self._wait_turn(run, ordinal, state):
                return False

            newest = state.newest_passed.get(ordinal)
            if newest is not None and newest > run.sequence:
                if run.supersede(f"{run.branch}#{newest}"):
                    superseded.append(
                        RunSuperseded(
                            run_id=run.run_id,
                            superseded_by=f"{run.branch}#{newest}",
                            checkpoint=ordinal,
                        )
                    )
                passed = False
            else:
                state.newest_passed[ordinal] = run.sequence
                state.progress[run.sequence] = max(state.progress.get(run.sequence, 0), ordinal)
                if exclusive:
                    state.holders[ordinal] = run.sequence
                for seq, other in state.in_flight.items():
                    if seq >= run.sequence or state.progress.get(seq, 0) >= ordinal:
                        continue
                    if other.supersede(run.run_id):
                        superseded.append(
                            RunSuperseded(
                                run_id=other.run_id,
                                superseded_by=run.run_id,
                                checkpoint=ordinal,
                            )
                        )
                passed = True
            if superseded:
                self._changed.notify_all()

        for event in superseded:
            logger.info(event.log_message())
            if self._on_superseded is not None:
                await self._on_superseded(event)
        return passed

    async def _wait_turn(self, run: Run, ordinal: int, state: _BranchState) -> bool:
        """Block (lock held) until ``run`` may take ``ordinal``; False if it ended meanwhile."""
        waiting = state.waiting.setdefault(ordinal, set())
        waiting.add(run.sequence)
        holder = state.holders.get(ordinal)
        if holder is not None:
            logger.info(
                "Run '{run_id}' waiting for '{branch}#{holder}' to leave checkpoint {ordinal}",
                run_id=run.run_id,
                branch=run.branch,
                holder=holder,
                ordinal=ordinal,
            )
        try:
            await self._changed.wait_for(
                lambda: run.is_terminal
                or (ordinal not in state.holders and run.sequence == max(waiting))
            )
        finally:
            waiting.discard(run.sequence)
            self._changed.notify_all()
        return not run.is_terminal
