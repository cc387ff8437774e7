from __future__ import annotations

import logging
import os
from typing import BinaryIO, Optional, Sequence

from url_poller.trigger.runner import CommandRunner, substitute_args

logger = logging.getLogger(__name__)


class CommandTrigger:
    """Notify callback that runs a command against the promoted master file."""

    def __init__(
        self,
        argv: Sequence[str],
        *,
        keep_going: bool = False,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        if not argv:
            raise ValueError("argv must name a command")
        self._argv = list(argv)
        self._keep_going = keep_going
        self._runner = runner or CommandRunner()

    async def __call__(self, fh: BinaryIO) -> bool:
        command, *args = self._argv
        result = await self._runner.run(command, substitute_args(args, os.fspath(fh.name)))
        if result.exit_status == 0:
            return True
        if self._keep_going:
            logger.warning("Command failed, continuing. command=%s status=%s", command, result.exit_status)
            return True
        logger.error("Command failed, stopping. command=%s status=%s", command, result.exit_status)
        return False
