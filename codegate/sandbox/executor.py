"""
Unified sandbox executor that delegates to the appropriate sandbox implementation.

This module provides the single entry point for running a script: it picks
the backend for the configured isolation level and races the run against
the wall-clock timeout.
"""
import asyncio
import logging
import time
from typing import Optional

from codegate.exceptions import ExecutionError, TimeoutError
from codegate.sandbox.base import SandboxConfig, SandboxLevel, SandboxOutcome
from codegate.sandbox.inprocess import InProcessSandbox
from codegate.sandbox.subprocess import SubprocessSandbox

logger = logging.getLogger(__name__)

# How long to wait for an abandoned unit to acknowledge cancellation
CANCEL_GRACE_SECONDS = 1.0


class SandboxExecutor:
    """Unified executor that selects the appropriate sandbox based on config."""

    def __init__(self, config: Optional[SandboxConfig] = None):
        self.config = config or SandboxConfig()
        self._sandbox = self._create_sandbox()

    def _create_sandbox(self):
        """Create the appropriate sandbox instance based on config level."""
        if self.config.level == SandboxLevel.INPROCESS:
            return InProcessSandbox(self.config)
        elif self.config.level == SandboxLevel.SUBPROCESS:
            return SubprocessSandbox(self.config)
        raise ValueError(f"Unknown sandbox level: {self.config.level}")

    async def run(self, code: str, surface, session_id: str = "default") -> SandboxOutcome:
        """Run a preflighted script body in a fresh, single-use unit.

        Args:
            code: Script body, already normalized and validated.
            surface: Capability surface the script's read/write calls go to.
            session_id: Used to name the unit in logs.

        Returns:
            The script's JSON result and captured output.

        Raises:
            TimeoutError: If the script outlives the configured timeout. The
                unit is cancelled (a child process is killed) but any remote
                call already in flight is not recalled.
            ExecutionError: If the script raised.
            ApiError: If a capability call failed and the script let it escape.
        """
        unit_id = f"{session_id}:{int(time.time() * 1000)}"
        logger.info(f"Starting unit {unit_id} ({self.config.level.value})")
        start = time.monotonic()

        task = asyncio.ensure_future(self._sandbox.execute(code, surface))
        try:
            done, _ = await asyncio.wait({task}, timeout=self.config.timeout)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            logger.info(f"Unit {unit_id} finished in {int((time.monotonic() - start) * 1000)}ms")
            try:
                return task.result()
            except ExecutionError as e:
                # Errors raised host-side, such as an exhausted quota, do not know the script
                if not e.code:
                    e.code = code
                    e.details["code"] = code
                raise

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.warning(f"Unit {unit_id} timed out after {duration_ms}ms")
        task.cancel()
        await asyncio.wait({task}, timeout=CANCEL_GRACE_SECONDS)
        if task.done() and not task.cancelled():
            # Consume the exception so it is not reported as never retrieved
            task.exception()
        raise TimeoutError(duration_ms)
