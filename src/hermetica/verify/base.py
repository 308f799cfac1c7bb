"""Inspector interface and reports."""

from __future__ import annotations

from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


@dataclass
class VerificationReport:
    """Result of one inspector run against one subject."""

    inspector: str
    subject: str  # artifact path or commit id
    passed: bool
    summary: str
    details: list[str] = field(default_factory=list)
    documents: list[Path] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "inspector": self.inspector,
            "subject": self.subject,
            "passed": self.passed,
            "summary": self.summary,
            "details": list(self.details),
            "documents": [str(d) for d in self.documents],
            "data": self.data,
        }


class Inspector(ABC):
    """Read-only check of a finished artifact (or commit).

    Implementations never modify their subject, so repeated runs against
    the same subject give the same report.
    """

    name: str = "inspector"

    @abstractmethod
    def inspect(self, subject: Path) -> VerificationReport:
        ...


def run_inspectors(
    inspectors: list[Inspector],
    subject: Path,
    concurrency: int = 1,
) -> list[VerificationReport]:
    """Run independent inspectors, returning reports in input order.

    The first inspector error is re-raised after all have finished.
    """
    if concurrency <= 1 or len(inspectors) <= 1:
        return [inspector.inspect(subject) for inspector in inspectors]

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        futures = [pool.submit(inspector.inspect, subject) for inspector in inspectors]
        outcomes: list[VerificationReport | BaseException] = []
        for future in futures:
            try:
                outcomes.append(future.result())
            except Exception as exc:
                outcomes.append(exc)

    reports: list[VerificationReport] = []
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
        reports.append(outcome)
    return reports
