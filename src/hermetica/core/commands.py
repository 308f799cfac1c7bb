"""External command execution."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    argv: list[str]
    returncode: int
    output: str = ""  # stdout and stderr, interleaved

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Run external tools to completion and capture their output.

    Every stage shells out through one of these, so tests (or a sandboxing
    wrapper) can substitute their own.
    """

    def run(
        self,
        argv: list[str],
        *,
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
        input: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        logger.debug("exec %s (cwd=%s)", argv, cwd)
        try:
            proc = subprocess.run(
                argv,
                cwd=str(cwd) if cwd is not None else None,
                env=env,
                input=input,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=timeout,
                check=False,
            )
        except FileNotFoundError:
            return CommandResult(argv=list(argv), returncode=127, output=f"{argv[0]}: command not found\n")
        return CommandResult(argv=list(argv), returncode=proc.returncode, output=proc.stdout or "")
