"""Smoke test — start the launcher briefly and sanity-check the artifact."""

from __future__ import annotations

import json
import os
import signal
import subprocess
from pathlib import Path

from hermetica.core.fs import tree_size
from hermetica.verify.base import Inspector, VerificationReport

_LISTING_LIMIT = 20
_OUTPUT_LIMIT = 4000
_KILL_GRACE = 2.0


class SmokeTest(Inspector):
    """Run the artifact's launcher under a hard timeout.

    Reaching the timeout means the service kept running, which is the
    expected outcome: the process group is terminated and the check passes.
    Exiting early with a non-zero code fails it.
    """

    name = "smoke"

    def __init__(
        self,
        program: str,
        assets_dir: str = ".next",
        timeout: float = 5.0,
        port: int | None = None,
    ) -> None:
        self.program = program
        self.assets_dir = assets_dir
        self.timeout = timeout
        self.port = port

    def inspect(self, subject: Path) -> VerificationReport:
        subject = Path(subject)
        details: list[str] = []
        data: dict = {}

        assets = subject / self.assets_dir
        if not assets.is_dir():
            return VerificationReport(
                inspector=self.name,
                subject=str(subject),
                passed=False,
                summary=f"Compiled assets directory {self.assets_dir} is missing",
            )
        listing = sorted(os.listdir(assets))
        details.append(f"{self.assets_dir}/: " + ", ".join(listing[:_LISTING_LIMIT]))
        data["assets_size"] = tree_size(assets)
        details.append(f"build size: {_human_size(data['assets_size'])}")

        package_json = subject / "package.json"
        try:
            package = json.loads(package_json.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            return VerificationReport(
                inspector=self.name,
                subject=str(subject),
                passed=False,
                summary=f"package.json unreadable: {exc}",
                details=details,
                data=data,
            )
        data["package"] = {"name": package.get("name"), "version": package.get("version")}
        details.append(f"package: {package.get('name')} {package.get('version')}")

        launcher = subject / "bin" / self.program
        timed_out, returncode, output = self._launch(launcher)
        data.update({"timed_out": timed_out, "returncode": returncode})
        if output:
            details.append(output[-_OUTPUT_LIMIT:])

        if timed_out:
            summary = f"Server still running after {self.timeout:g}s; stopped"
            passed = True
        elif returncode == 0:
            summary = "Launcher exited cleanly before the timeout"
            passed = True
        else:
            summary = f"Launcher exited with code {returncode}"
            passed = False
        return VerificationReport(
            inspector=self.name,
            subject=str(subject),
            passed=passed,
            summary=summary,
            details=details,
            data=data,
        )

    def _launch(self, launcher: Path) -> tuple[bool, int | None, str]:
        env = dict(os.environ)
        if self.port is not None:
            env["PORT"] = str(self.port)
        try:
            proc = subprocess.Popen(
                [str(launcher)],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                env=env,
                text=True,
                start_new_session=True,
            )
        except OSError as exc:
            return False, 127, f"{launcher}: {exc}"

        try:
            output, _ = proc.communicate(timeout=self.timeout)
            return False, proc.returncode, output or ""
        except subprocess.TimeoutExpired:
            _stop(proc)
            output, _ = proc.communicate()
            return True, proc.returncode, output or ""


def _stop(proc: subprocess.Popen) -> None:
    """SIGTERM the launcher's process group, SIGKILL after a grace period."""
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        return
    try:
        proc.wait(timeout=_KILL_GRACE)
    except subprocess.TimeoutExpired:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.wait()


def _human_size(size: int) -> str:
    value = float(size)
    for unit in ("B", "K", "M", "G"):
        if value < 1024 or unit == "G":
            return f"{value:.1f}{unit}" if unit != "B" else f"{int(value)}B"
        value /= 1024
    return f"{size}B"
