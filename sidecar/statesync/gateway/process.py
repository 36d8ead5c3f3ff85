"""
Supervised gateway process.

Wraps the OpenClaw gateway as an asyncio child process with a
terminate-then-wait shutdown contract.

Invariants:
    - The gateway gets SIGTERM first and stop_timeout_seconds to exit
    - SIGKILL is only sent after the grace period expires
    - Exit codes from signal deaths are reported shell-style (128 + n)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from typing import Mapping, Sequence

logger = logging.getLogger(__name__)


def shell_exit_code(returncode: int) -> int:
    """Convert a Popen return code to the code a shell would report."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class GatewayProcess:
    """A child process supervised by the sidecar.

    Attributes:
        command: Argument vector
        env: Extra environment variables for the child
        stop_timeout_seconds: Grace period after SIGTERM

    Example:
        >>> gateway = GatewayProcess(["node", "openclaw.mjs", "gateway"])
        >>> await gateway.start()
        >>> code = await gateway.terminate()
    """

    def __init__(
        self,
        command: Sequence[str],
        env: Mapping[str, str] | None = None,
        stop_timeout_seconds: float = 30.0,
    ) -> None:
        self.command = list(command)
        self.env = dict(env or {})
        self.stop_timeout_seconds = stop_timeout_seconds
        self._process: asyncio.subprocess.Process | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        """Spawn the gateway, inheriting stdout/stderr.

        Raises:
            OSError: If the executable cannot be started
        """
        if self._process is not None:
            raise RuntimeError("Gateway already started")

        logger.info("Starting gateway...", extra={"command": self.command})
        self._process = await asyncio.create_subprocess_exec(
            *self.command,
            env={**os.environ, **self.env},
        )
        logger.info(f"Gateway started (PID {self._process.pid}).")

    async def wait(self) -> int:
        """Wait for the gateway to exit on its own.

        Returns:
            Shell-style exit code
        """
        if self._process is None:
            raise RuntimeError("Gateway not started")
        returncode = await self._process.wait()
        return shell_exit_code(returncode)

    async def terminate(self) -> int:
        """Stop the gateway gracefully, escalating to SIGKILL on timeout.

        Returns:
            Shell-style exit code of the gateway
        """
        if self._process is None:
            raise RuntimeError("Gateway not started")

        if self._process.returncode is None:
            logger.info(f"Stopping gateway (PID {self._process.pid})...")
            try:
                self._process.send_signal(signal.SIGTERM)
            except ProcessLookupError:
                pass

            try:
                await asyncio.wait_for(self._process.wait(), timeout=self.stop_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(
                    f"Gateway did not exit within {self.stop_timeout_seconds}s, killing it"
                )
                try:
                    self._process.kill()
                except ProcessLookupError:
                    pass
                await self._process.wait()

        code = shell_exit_code(self._process.returncode)
        logger.info(f"Gateway exited with code {code}.")
        return code
