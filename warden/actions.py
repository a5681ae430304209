"""Side effects run when a subscription fires.

A subscription either runs a shell command or publishes the transition onto
the message bus. Outcomes are logged; nothing here raises back into the
registry.
"""

import asyncio
import os
import signal
import tempfile
from dataclasses import dataclass
from typing import Any, Sequence

from warden.models import EventKind, Handler, Host
from warden.shared.config import SubscriptionConfig
from warden.shared.logger import get_logger

logger = get_logger("actions")


@dataclass
class CommandResult:
    command: str
    success: bool
    returncode: int | None
    output: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "success": self.success,
            "returncode": self.returncode,
            "output": self.output,
        }


def transition_env(event: EventKind, host: Host, online: Sequence[Host]) -> dict[str, str]:
    """Environment variables describing a transition to an external command."""
    return {
        "WARDEN_EVENT": event.value,
        "WARDEN_HOST": host.name,
        "WARDEN_ADDRESS": host.address,
        "WARDEN_ONLINE": " ".join(h.name for h in online),
    }


def transition_payload(event: EventKind, host: Host, online: Sequence[Host]) -> dict[str, Any]:
    return {
        "event": event.value,
        "host": host.to_dict(),
        "online": [h.to_dict() for h in online],
    }


async def _kill(proc: asyncio.subprocess.Process):
    """Kill the command's whole process group and reap the shell."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    await proc.wait()


async def run_command(
    command: str,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run ``command`` with ``sh -c`` from the temp directory and log the outcome."""
    logger.info(f"Executing external command `{command}`...")
    try:
        proc = await asyncio.create_subprocess_exec(
            "sh", "-c", command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=tempfile.gettempdir(),
            env={**os.environ, **(env or {})},
            start_new_session=True,
        )
    except OSError as e:
        logger.error(f"External command could not be started: {e}")
        return CommandResult(command=command, success=False, returncode=None, output=str(e))

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _kill(proc)
        logger.error(f"External command `{command}` timed out after {timeout}s")
        return CommandResult(
            command=command,
            success=False,
            returncode=proc.returncode,
            output=f"timed out after {timeout}s",
        )
    except asyncio.CancelledError:
        await _kill(proc)
        logger.warning(f"External command `{command}` killed on cancellation")
        raise

    output = stdout.decode(errors="replace").strip()
    result = CommandResult(
        command=command,
        success=proc.returncode == 0,
        returncode=proc.returncode,
        output=output,
    )
    if result.success:
        logger.info(f"External command exited successfully. Output: {output}")
    else:
        logger.error(
            f"External command failed with exit status {proc.returncode}. Output: {output}",
            extra={"warden_data": result.to_dict()},
        )
    return result


def command_handler(command: str, timeout: float | None = None) -> Handler:
    async def handler(event: EventKind, host: Host, online: Sequence[Host]):
        await run_command(command, env=transition_env(event, host, online), timeout=timeout)

    return handler


def publish_handler(bus, channel: str) -> Handler:
    async def handler(event: EventKind, host: Host, online: Sequence[Host]):
        await bus.publish(channel, transition_payload(event, host, online))

    return handler


def build_handler(subscription: SubscriptionConfig, bus=None) -> Handler:
    """Turn a configured subscription into a handler callback."""
    if subscription.exec is not None:
        return command_handler(subscription.exec, timeout=subscription.timeout)
    if bus is None:
        raise ValueError(f"Subscription publishing to {subscription.publish!r} needs a message bus")
    return publish_handler(bus, subscription.publish)
