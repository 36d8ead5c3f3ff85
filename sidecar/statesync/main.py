"""
State sync sidecar - container entrypoint.

This module supervises the OpenClaw gateway together with its state
backup:
- Restore (bucket -> state dir, once, before launch)
- Gateway config injection
- Gateway child process
- Backup loop (state dir -> bucket, periodic + final drain)

Usage:
    statesync-entrypoint
    statesync-entrypoint -- node openclaw.mjs gateway --port 8080

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - Restore completes or is skipped strictly before the gateway launches
    - Restore and backup failures are never fatal to the gateway
    - Malformed backup settings disable backup; the gateway still runs
    - A shutdown requested before launch never starts the gateway
    - On shutdown the gateway is stopped before the final backup runs
    - The process exits with the gateway's code, or 128 + signum on a signal

How to change safely:
    - Keep the state machine linear; every path must reach TERMINATED
    - Test shutdown sequence thoroughly
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import signal
import sys
from enum import Enum
from typing import Sequence

import json_log_formatter

from .backup import BackupCycle, BackupLoop
from .config import ObservabilityConfig, SidecarConfig
from .errors import ConfigMissingError, RestoreIncompleteError, StateSyncError
from .gateway import GatewayProcess, inject_gateway_config
from .restore import Restorer
from .store import ObjectStore, create_object_store

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def setup_logging(observability: ObservabilityConfig, verbose: bool = False) -> None:
    """Configure logging based on configuration.

    Args:
        observability: Logging configuration
        verbose: Force DEBUG level
    """
    if verbose:
        level = logging.DEBUG
    else:
        level = getattr(logging, observability.log_level.upper(), logging.INFO)

    if observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("aiobotocore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


class SupervisorState(str, Enum):
    """Lifecycle states, entered strictly in declaration order."""

    BOOTING = "booting"
    RESTORING = "restoring"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class Supervisor:
    """Runs restore, the gateway and the backup loop as one process.

    Attributes:
        config: Sidecar configuration
        store: Object store (created from config if not provided)
        gateway: Gateway process (created from config if not provided)
        state: Current lifecycle state
        backup_loop: Backup loop, if backup is active

    Example:
        >>> supervisor = Supervisor(SidecarConfig.from_env())
        >>> supervisor.install_signal_handlers(asyncio.get_running_loop())
        >>> exit_code = await supervisor.run()
    """

    def __init__(
        self,
        config: SidecarConfig,
        store: ObjectStore | None = None,
        gateway: GatewayProcess | None = None,
    ) -> None:
        self.config = config
        self.store = store
        self.gateway = gateway or GatewayProcess(
            config.gateway.command,
            env={"PORT": str(config.gateway.port)},
            stop_timeout_seconds=config.gateway.stop_timeout_seconds,
        )
        self.state = SupervisorState.BOOTING
        self.backup_loop: BackupLoop | None = None
        self.shutdown_signal: int | None = None
        self._shutdown_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    def _enter(self, state: SupervisorState) -> None:
        logger.debug(f"Supervisor {self.state.value} -> {state.value}")
        self.state = state

    async def run(self) -> int:
        """Run the full lifecycle.

        Returns:
            Process exit code
        """
        self.config.log_config()
        self.config.state.state_path.mkdir(parents=True, exist_ok=True)
        self.config.state.staging_path.mkdir(parents=True, exist_ok=True)

        backup_active = await self._open_store()
        try:
            if backup_active:
                self._enter(SupervisorState.RESTORING)
                await self._restore()

            if self._shutdown_event.is_set():
                # The gateway never ran, so there is nothing new to back up.
                self._enter(SupervisorState.SHUTTING_DOWN)
                logger.info("Shutdown requested before launch, gateway not started.")
                exit_code = 128 + (self.shutdown_signal or signal.SIGTERM)
            else:
                exit_code = await self._launch(backup_active)
        finally:
            await self._stop_background()
            if self.store is not None and self.store.is_connected:
                await self.store.close()
            self._enter(SupervisorState.TERMINATED)

        logger.info(f"Exiting with code {exit_code}.")
        return exit_code

    async def _launch(self, backup_active: bool) -> int:
        """Start the gateway and the backup loop, then wait for an exit."""
        if self.config.gateway.inject_config:
            inject_gateway_config(self.config.state.state_dir, self.config.state.sentinel_name)

        self._enter(SupervisorState.RUNNING)
        await self.gateway.start()

        if backup_active:
            self.backup_loop = BackupLoop(
                BackupCycle(self.config, self.store),
                interval_seconds=self.config.backup.interval_seconds,
            )
            self._tasks.append(
                asyncio.create_task(self.backup_loop.run(), name="backup-loop")
            )

        return await self._wait_for_exit()

    async def _open_store(self) -> bool:
        """Connect the object store if backup should run for this process."""
        if self.config.backup_error:
            logger.error(
                f"Invalid backup settings, backup sync disabled: {self.config.backup_error}"
            )
            return False

        if not self.config.backup.enabled:
            logger.info("Backup sync disabled (BACKUP_ENABLED=false).")
            return False

        try:
            if self.store is None:
                self.store = create_object_store(self.config)
            await self.store.connect()
        except ConfigMissingError as e:
            logger.warning(f"{e}. Attach a bucket to enable backup sync.")
            return False
        except StateSyncError as e:
            logger.error(f"Object store unavailable, backup sync disabled: {e}")
            return False
        return True

    async def _restore(self) -> None:
        try:
            await Restorer(self.config, self.store).restore()
        except RestoreIncompleteError as e:
            logger.error(f"Restore failed, starting gateway with partial state: {e}")

    async def _wait_for_exit(self) -> int:
        gateway_task = asyncio.create_task(self.gateway.wait(), name="gateway-wait")
        shutdown_task = asyncio.create_task(self._shutdown_event.wait(), name="shutdown-wait")

        done, _ = await asyncio.wait(
            {gateway_task, shutdown_task},
            return_when=asyncio.FIRST_COMPLETED,
        )

        self._enter(SupervisorState.SHUTTING_DOWN)
        if shutdown_task in done:
            await self.gateway.terminate()
            gateway_task.cancel()
            await asyncio.gather(gateway_task, return_exceptions=True)
            return 128 + (self.shutdown_signal or signal.SIGTERM)

        shutdown_task.cancel()
        await asyncio.gather(shutdown_task, return_exceptions=True)
        exit_code = gateway_task.result()
        logger.info(f"Gateway exited with code {exit_code}.")
        return exit_code

    async def _stop_background(self) -> None:
        if self.backup_loop is not None:
            self.backup_loop.stop()

        if self._tasks:
            results = await asyncio.gather(*self._tasks, return_exceptions=True)
            for task, result in zip(self._tasks, results):
                if isinstance(result, Exception):
                    logger.error(f"Task {task.get_name()} failed: {result}")
            self._tasks.clear()

    def request_shutdown(self, signum: int = signal.SIGTERM) -> None:
        """Request graceful shutdown."""
        if self.shutdown_signal is None:
            logger.info(f"Received signal {signum}, initiating shutdown")
            self.shutdown_signal = signum
        self._shutdown_event.set()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, self.request_shutdown, sig)

    def remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="statesync-entrypoint",
        description="Run the OpenClaw gateway with state restore and backup",
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="Gateway command (overrides GATEWAY_COMMAND), given after --",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    args = parser.parse_args(argv)
    if args.command and args.command[0] == "--":
        args.command = args.command[1:]
    return args


async def run_supervisor(config: SidecarConfig) -> int:
    """Run a Supervisor with signal handlers installed on the running loop."""
    supervisor = Supervisor(config)
    loop = asyncio.get_running_loop()
    supervisor.install_signal_handlers(loop)
    try:
        return await supervisor.run()
    finally:
        supervisor.remove_signal_handlers(loop)


def main(argv: Sequence[str] | None = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    # Load configuration
    try:
        config = SidecarConfig.from_env()
        if args.command:
            config.gateway = dataclasses.replace(config.gateway, command=tuple(args.command))
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.observability, verbose=args.verbose)

    try:
        exit_code = asyncio.run(run_supervisor(config))
    except OSError as e:
        logger.error(f"Failed to start gateway: {e}")
        exit_code = 127
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
