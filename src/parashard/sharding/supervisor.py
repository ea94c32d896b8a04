"""Worker process lifecycle: spawn, await exit, cancel on bail.

One OS process per partition runs the external test command against
exactly that partition's files. The coordinator never reads worker
output; it only observes exit status. Results travel through the
results area (see ``parashard.sharding.protocol``).
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from typing import TYPE_CHECKING

from parashard.config import FILES_PLACEHOLDER, REPORTER_CONFIG_PLACEHOLDER, WORKER_PLACEHOLDER
from parashard.errors import BailError, WorkerLaunchError
from parashard.sharding.models import ExecutionOutcome, WorkerHandle

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from parashard.config import ExecutionConfig
    from parashard.sharding.models import Partition

logger = logging.getLogger(__name__)

LAUNCH_FAILURE_EXIT_CODE = 127
TIMEOUT_EXIT_CODE = 124
_EMBEDDED_FILES_SEPARATOR = ","
_STDERR_FD = 2


class WorkerSupervisor:
    """Launches and watches worker processes for one run."""

    def __init__(
        self,
        execution: ExecutionConfig,
        *,
        reporter_config_path: Path,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            execution: Launch settings (command template, timeouts, env var name).
            reporter_config_path: Configuration file passed to every worker.
            cwd: Working directory for the workers.
            env: Base environment; defaults to the current process environment.
        """
        self.execution = execution
        self.reporter_config_path = reporter_config_path
        self.cwd = cwd
        self.base_env = dict(os.environ if env is None else env)
        self.handles: dict[int, WorkerHandle] = {}

    def build_command(self, partition: Partition, worker_index: int) -> list[str]:
        """Expand the command template for one worker."""
        separator = self.execution.files_separator
        command: list[str] = []
        for arg in [*self.execution.command, *self.execution.extra_args]:
            if arg == FILES_PLACEHOLDER:
                if separator:
                    command.append(separator.join(partition.items))
                else:
                    command.extend(partition.items)
                continue
            expanded = arg.replace(REPORTER_CONFIG_PLACEHOLDER, str(self.reporter_config_path))
            expanded = expanded.replace(WORKER_PLACEHOLDER, str(worker_index))
            if FILES_PLACEHOLDER in expanded:
                joined = (separator or _EMBEDDED_FILES_SEPARATOR).join(partition.items)
                expanded = expanded.replace(FILES_PLACEHOLDER, joined)
            command.append(expanded)
        return command

    def build_env(self, worker_index: int) -> dict[str, str]:
        """Return the worker environment with its index injected."""
        env = dict(self.base_env)
        env[self.execution.worker_env_var] = str(worker_index)
        return env

    async def run(self, partition: Partition, worker_index: int) -> ExecutionOutcome:
        """Run one worker to completion and report how it exited.

        Resolves only once the process has exited. A command that cannot
        be started yields exit code 127; a timed-out worker is killed and
        yields 124. If the awaiting task is cancelled the process is
        terminated before the cancellation propagates.
        """
        handle = WorkerHandle(worker_index=worker_index)
        self.handles[worker_index] = handle

        if not partition.items:
            logger.debug("Worker %d has no items, not spawning it", worker_index)
            handle.settle(0)
            return ExecutionOutcome(worker_index=worker_index, exit_code=0)

        command = self.build_command(partition, worker_index)
        logger.info(
            "Worker %d: starting %d file(s) (weight %g)",
            worker_index,
            len(partition),
            partition.total_weight,
        )
        logger.debug("Worker %d command: %s", worker_index, " ".join(command))

        start = time.perf_counter()
        try:
            process = await self._launch(command, worker_index)
        except WorkerLaunchError as exc:
            logger.error("%s", exc)
            handle.settle(LAUNCH_FAILURE_EXIT_CODE)
            return ExecutionOutcome(
                worker_index=worker_index,
                exit_code=LAUNCH_FAILURE_EXIT_CODE,
                item_count=len(partition),
                error=str(exc),
            )
        except asyncio.CancelledError:
            handle.cancelled = True
            handle.settle(-1)
            raise

        timed_out = False
        timeout = self.execution.worker_timeout or None
        try:
            exit_code = await asyncio.wait_for(process.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning("Worker %d timed out after %s seconds", worker_index, timeout)
            timed_out = True
            await self._terminate(process, grace=0)
            exit_code = TIMEOUT_EXIT_CODE
        except asyncio.CancelledError:
            handle.cancelled = True
            logger.info("Worker %d cancelled, terminating process %d", worker_index, process.pid)
            await self._terminate(process, grace=self.execution.bail_grace_period)
            if not handle.settled:
                handle.settle(process.returncode if process.returncode is not None else -1)
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        handle.settle(exit_code)
        if self.execution.verbose or exit_code != 0:
            logger.info(
                "Worker %d finished with exit code %d in %.0fms",
                worker_index,
                exit_code,
                duration_ms,
            )
        return ExecutionOutcome(
            worker_index=worker_index,
            exit_code=exit_code,
            duration_ms=duration_ms,
            item_count=len(partition),
            timed_out=timed_out,
        )

    async def _launch(self, command: list[str], worker_index: int) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *command,
                cwd=self.cwd,
                env=self.build_env(worker_index),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=_STDERR_FD if self.execution.redirect_stdout else None,
            )
        except OSError as exc:
            msg = f"Worker {worker_index} could not start {command[0]}: {exc}"
            raise WorkerLaunchError(msg) from exc

    @staticmethod
    async def _terminate(process: asyncio.subprocess.Process, *, grace: float) -> None:
        """Stop *process*, escalating to kill after *grace* seconds."""
        if process.returncode is not None:
            return
        try:
            if grace > 0:
                process.terminate()
                try:
                    await asyncio.wait_for(process.wait(), timeout=grace)
                except TimeoutError:
                    process.kill()
            else:
                process.kill()
            await process.wait()
        except ProcessLookupError:
            pass  # Process already exited


async def run_workers(
    supervisor: WorkerSupervisor,
    partitions: Sequence[Partition],
    *,
    bail: bool = False,
) -> list[ExecutionOutcome]:
    """Start one worker per partition in parallel and join them all.

    Workers are numbered from 1 in partition order. Without *bail* every
    worker runs to completion regardless of failures. With *bail* the
    first non-zero exit cancels the remaining workers immediately.

    Returns:
        Outcomes ordered by worker index.

    Raises:
        BailError: In bail mode, when a worker exits non-zero.
    """
    tasks: dict[asyncio.Task[ExecutionOutcome], int] = {
        asyncio.create_task(supervisor.run(partition, index), name=f"worker-{index}"): index
        for index, partition in enumerate(partitions, start=1)
    }
    outcomes: list[ExecutionOutcome] = []
    pending: set[asyncio.Task[ExecutionOutcome]] = set(tasks)

    try:
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
            for task in sorted(done, key=lambda t: tasks[t]):
                outcome = task.result()
                outcomes.append(outcome)
                if bail and not outcome.success:
                    logger.error(
                        "BAIL set and worker %d exited with errors, exiting early",
                        outcome.worker_index,
                    )
                    raise BailError(outcome.worker_index, outcome.exit_code)
    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    return sorted(outcomes, key=lambda o: o.worker_index)
