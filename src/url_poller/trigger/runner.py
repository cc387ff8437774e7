from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

logger = logging.getLogger(__name__)

PATH_PLACEHOLDER = "{}"

OutputSink = Callable[[str], None]


@dataclass(frozen=True, slots=True)
class CommandResult:
    exit_status: int
    output: str


def _write_stdout(line: str) -> None:
    sys.stdout.write(line)
    sys.stdout.flush()


def substitute_args(args: Sequence[str], path: str) -> list[str]:
    """Replace each "{}" argument with ``path``; append ``path`` when there is none."""
    if any(PATH_PLACEHOLDER in arg for arg in args):
        return [arg.replace(PATH_PLACEHOLDER, path) for arg in args]
    return [*args, path]


class CommandRunner:
    """
    Run a program without a shell, capturing its combined stdout and stderr.

    Each output line is forwarded to ``sink`` as soon as it is read. If the
    awaiting task is cancelled, the child is terminated and reaped before the
    cancellation propagates.
    """

    def __init__(self, *, sink: Optional[OutputSink] = None, terminate_timeout_seconds: float = 5.0) -> None:
        self._sink = sink or _write_stdout
        self._terminate_timeout_seconds = terminate_timeout_seconds

    async def run(self, command: str, args: Sequence[str]) -> CommandResult:
        logger.debug("command.start command=%s args=%s", command, list(args))
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
        lines: list[str] = []
        try:
            assert process.stdout is not None
            async for raw in process.stdout:
                line = raw.decode("utf-8", errors="replace")
                lines.append(line)
                self._sink(line)
            exit_status = await process.wait()
        except BaseException:
            await self._terminate(process)
            raise

        logger.debug("command.exit command=%s status=%s", command, exit_status)
        return CommandResult(exit_status=exit_status, output="".join(lines))

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        logger.debug("command.terminate pid=%s", process.pid)
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self._terminate_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("Command did not exit after terminate, killing. pid=%s", process.pid)
            process.kill()
            await process.wait()
