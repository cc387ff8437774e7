"""Running an external command whenever the polled content changes."""

from url_poller.trigger.command_trigger import CommandTrigger
from url_poller.trigger.runner import CommandResult, CommandRunner, substitute_args

__all__ = ["CommandResult", "CommandRunner", "CommandTrigger", "substitute_args"]
