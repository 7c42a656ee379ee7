"""
Blocking process runner used for every external tool call.

Results are reported as CommandResult objects with an explicit reason,
so callers branch on exit status instead of matching output text.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Tuple

from .errors import CommandFailedError

logger = logging.getLogger(__name__)

OK = "ok"
EXIT_STATUS = "exit-status"
NOT_FOUND = "not-found"
OS_ERROR = "os-error"


@dataclass(frozen=True)
class CommandResult:
    args: Tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""
    reason: str = OK

    @property
    def ok(self) -> bool:
        return self.reason == OK and self.returncode == 0

    @property
    def output(self) -> str:
        """Most useful diagnostic text: stderr, falling back to stdout"""
        return (self.stderr.strip() or self.stdout.strip())[-2000:]

    def describe(self) -> str:
        cmd = shlex.join(self.args)
        if self.reason == NOT_FOUND:
            return f"'{self.args[0]}' not found (while running: {cmd})"
        if self.reason == OS_ERROR:
            return f"could not start '{cmd}': {self.output}"
        detail = f" - {self.output}" if self.output else ""
        return f"'{cmd}' exited with status {self.returncode}{detail}"


class ProcessRunner:
    """Runs commands to completion, one at a time, with no timeout"""

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        stream: bool = False,
    ) -> CommandResult:
        """
        Execute a command and wait for it to exit.

        Args:
            args: Command and arguments (no shell involved)
            cwd: Working directory for the command
            env: Full environment for the child, or None to inherit
            stream: Send output straight to the console instead of capturing it

        Returns:
            CommandResult; never raises for non-zero exits or missing executables
        """
        args = tuple(str(a) for a in args)
        logger.info("Running: %s", shlex.join(args))
        try:
            proc = subprocess.run(
                args,
                cwd=cwd,
                env=dict(env) if env is not None else None,
                capture_output=not stream,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except FileNotFoundError:
            logger.debug("Executable not found: %s", args[0])
            return CommandResult(args, 127, reason=NOT_FOUND)
        except OSError as e:
            logger.debug("Failed to start %s: %s", args[0], e)
            return CommandResult(args, 126, stderr=str(e), reason=OS_ERROR)

        result = CommandResult(
            args,
            proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            reason=OK if proc.returncode == 0 else EXIT_STATUS,
        )
        if not result.ok:
            logger.debug("Command failed: %s", result.describe())
        return result

    def check(self, args: Sequence[str], *, message: str, remediation: str = "", **kwargs) -> CommandResult:
        """Run a command whose failure is fatal to the pipeline"""
        result = self.run(args, **kwargs)
        if not result.ok:
            raise CommandFailedError(message, result, remediation)
        return result

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)
