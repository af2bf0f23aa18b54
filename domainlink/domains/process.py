"""
Timeout-bounded execution of external tools (nginx, certbot).
"""

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import List, Sequence

logger = logging.getLogger("domainlink.domains.process")


@dataclass
class CommandResult:
    """Outcome of an external command."""

    returncode: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        """Combined output, stdout first."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    @property
    def error_message(self) -> str:
        return self.stderr.strip() or self.stdout.strip() or f"exit code {self.returncode}"


def build_command(args: Sequence[str], use_sudo: bool = False) -> List[str]:
    cmd = list(args)
    if use_sudo:
        cmd.insert(0, "sudo")
    return cmd


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    with suppress(ProcessLookupError):
        process.kill()
    await process.wait()


async def run_command(cmd: Sequence[str], timeout: float) -> CommandResult:
    """
    Run a command and collect its output.

    A timeout kills the process and is reported as a failed result.
    Cancellation by the caller also kills the process before propagating.
    A missing binary raises FileNotFoundError.
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        await _terminate(process)
        logger.error(f"Command timed out after {timeout}s: {' '.join(cmd)}")
        return CommandResult(
            returncode=-1,
            stderr=f"timed out after {timeout}s",
            timed_out=True,
        )
    except BaseException:
        await _terminate(process)
        logger.warning(f"Command cancelled, process killed: {' '.join(cmd)}")
        raise

    return CommandResult(
        returncode=process.returncode,
        stdout=stdout.decode(errors="replace").strip(),
        stderr=stderr.decode(errors="replace").strip(),
    )
