"""Execution coordinator for observer notifications and step environments.

This module provides the glue shared by the stage executor and task runner:

- Observer notifications during a run (observer failures never fail a run)
- The environment every command step sees: run metadata, worker identity
  and the task's variant parameters
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from matrixci.kernel.logging import get_logger

if TYPE_CHECKING:
    from matrixci.kernel.domain.labels import Worker
    from matrixci.kernel.domain.pipeline import SubStep, TaskSpec
    from matrixci.kernel.domain.run import Run
    from matrixci.kernel.ports.observer_manager import ObserverManager

__all__ = ["ENV_PREFIX", "ExecutionCoordinator", "param_env_name"]

logger = get_logger(__name__)

ENV_PREFIX = "MATRIXCI_"
_NON_IDENT = re.compile(r"[^A-Za-z0-9]+")


def param_env_name(key: str) -> str:
    """Environment variable a task parameter is exported as.

    Examples
    --------
    >>> param_env_name("host_accel")
    'MATRIXCI_HOST_ACCEL'
    >>> param_env_name("spark.version")
    'MATRIXCI_SPARK_VERSION'
    """
    return ENV_PREFIX + _NON_IDENT.sub("_", key).strip("_").upper()


class ExecutionCoordinator:
    """Coordinates observer notifications and step environments.

    Examples
    --------
    Basic usage::

        coordinator = ExecutionCoordinator(observer_manager)
        await coordinator.notify(TaskStarted(...))
        env = coordinator.step_env(run, task, worker, step)
    """

    def __init__(self, observer_manager: ObserverManager | None = None) -> None:
        self.observer_manager = observer_manager

    async def notify(self, event: Any) -> None:
        """Log an event and deliver it to the observer manager, if any."""
        logger.debug(event.log_message())
        if self.observer_manager is None:
            return
        try:
            await self.observer_manager.notify(event)
        except Exception as e:
            logger.warning(
                "Observer notification failed for {event}: {error}",
                event=type(event).__name__,
                error=e,
            )

    def step_env(self, run: Run, task: TaskSpec, worker: Worker, step: SubStep) -> dict[str, str]:
        """Environment for one command step.

        Later entries win: run metadata, then task parameters, then the
        step's own ``env``.
        """
        env = {
            f"{ENV_PREFIX}RUN_ID": run.run_id,
            f"{ENV_PREFIX}BRANCH": run.branch,
            f"{ENV_PREFIX}SEQUENCE": str(run.sequence),
            f"{ENV_PREFIX}COMMIT": run.commit or run.requested_commit or "",
            f"{ENV_PREFIX}TASK": task.name,
            f"{ENV_PREFIX}STEP": step.name,
            f"{ENV_PREFIX}WORKER": worker.worker_id,
        }
        env.update({param_env_name(k): v for k, v in task.params.items()})
        env.update(step.env)
        return env
