"""Commit signature verification against a pinned trust anchor."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import requests

from hermetica.core.commands import CommandRunner
from hermetica.core.errors import NotARepository, SignatureInvalid
from hermetica.core.logging import HermeticaLogger
from hermetica.verify.base import Inspector, VerificationReport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Keyring:
    """A GnuPG home directory; ``None`` means the user's default keyring."""

    home: Path | None = None

    def env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self.home is not None:
            self.home.mkdir(parents=True, exist_ok=True, mode=0o700)
            env["GNUPGHOME"] = str(self.home)
        return env


class SignatureVerifier(Inspector):
    """Verify the signature on ``HEAD`` of the repository at the subject path.

    The trust anchor key is imported on a best-effort basis: a failed
    download or import is logged as a warning and verification proceeds
    against whatever the keyring already holds.
    """

    name = "signature"

    def __init__(
        self,
        keyring: Keyring,
        trust_anchor_url: str = "",
        runner: CommandRunner | None = None,
        session: requests.Session | None = None,
        run_logger: HermeticaLogger | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.keyring = keyring
        self.trust_anchor_url = trust_anchor_url
        self.runner = runner or CommandRunner()
        self.session = session or requests.Session()
        self.run_logger = run_logger
        self.timeout = timeout

    def inspect(self, subject: Path) -> VerificationReport:
        subject = Path(subject)
        if not (subject / ".git").exists():
            raise NotARepository(
                f"{subject} is not a git repository.",
                context={"path": str(subject)},
            )

        env = self.keyring.env()
        details = []
        if self.trust_anchor_url:
            details.append(self._import_trust_anchor(env))

        head = self.runner.run(["git", "rev-parse", "HEAD"], cwd=subject, env=env)
        commit = head.output.strip() if head.ok else "HEAD"

        result = self.runner.run(["git", "verify-commit", "HEAD"], cwd=subject, env=env)
        if not result.ok:
            raise SignatureInvalid(
                f"Commit {commit[:12]} has no valid signature.",
                context={"commit": commit, "returncode": result.returncode},
                output=result.output,
            )
        details.extend(line for line in result.output.splitlines() if line.strip())
        return VerificationReport(
            inspector=self.name,
            subject=commit,
            passed=True,
            summary=f"Commit {commit[:12]} signature verified",
            details=details,
        )

    def _import_trust_anchor(self, env: dict[str, str]) -> str:
        try:
            response = self.session.get(self.trust_anchor_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            return self._warn(f"Could not fetch trust anchor {self.trust_anchor_url}: {e}")

        result = self.runner.run(["gpg", "--batch", "--import"], env=env, input=response.text)
        if not result.ok:
            return self._warn(f"gpg --import exited {result.returncode}: {result.output.strip()[:200]}")
        return f"Imported trust anchor from {self.trust_anchor_url}"

    def _warn(self, message: str) -> str:
        logger.warning(message)
        if self.run_logger is not None:
            self.run_logger.warning(self.name, message)
        return message
