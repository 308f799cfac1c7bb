"""Stage DAG — declare pipeline stages and resolve their run order."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from hermetica.core.errors import PipelineError


@dataclass(frozen=True)
class Stage:
    """A named pipeline step and the steps it consumes."""

    name: str
    depends_on: tuple[str, ...] = field(default=())
    description: str = ""


STAGES: tuple[Stage, ...] = (
    Stage("resolve", (), "populate the offline dependency cache"),
    Stage("build", ("resolve",), "offline install and build"),
    Stage("assemble", ("build",), "place outputs and launcher in the store"),
    Stage("image", ("assemble",), "write a container image archive"),
    Stage("smoke", ("assemble",), "start the launcher under a timeout"),
    Stage("sbom", ("assemble",), "generate SPDX and CycloneDX documents"),
    Stage("scan", ("assemble",), "scan the artifact for known vulnerabilities"),
    Stage("verify", ("assemble",), "smoke test, SBOM and scan, run concurrently"),
    Stage("signature", (), "verify the signature on the current commit"),
)

# Stages skipped together when the artifact is already in the store.
ARTIFACT_STAGES = frozenset({"resolve", "build", "assemble"})


def resolve_order(stages: tuple[Stage, ...] | list[Stage], target: str | None = None) -> list[Stage]:
    """Topological sort of ``target`` and everything it depends on.

    With no target, every stage is ordered. Ties keep declaration order.
    """
    stage_map = {stage.name: stage for stage in stages}

    if target is not None and target not in stage_map:
        raise PipelineError(
            f"Unknown stage '{target}'. Available stages: {sorted(stage_map)}",
            context={"target": target},
        )

    for stage in stages:
        for dep in stage.depends_on:
            if dep not in stage_map:
                raise PipelineError(
                    f"Stage '{stage.name}' depends on unknown stage '{dep}'",
                    context={"stage": stage.name, "dependency": dep},
                )

    # Restrict to the closure of the target
    wanted = set(stage_map) if target is None else _closure(stage_map, target)

    in_degree: dict[str, int] = {name: 0 for name in stage_map if name in wanted}
    children: dict[str, list[str]] = {name: [] for name in in_degree}
    for stage in stages:
        if stage.name not in wanted:
            continue
        for dep in stage.depends_on:
            children[dep].append(stage.name)
            in_degree[stage.name] += 1

    queue: deque[str] = deque(name for name, degree in in_degree.items() if degree == 0)
    order: list[str] = []
    while queue:
        name = queue.popleft()
        order.append(name)
        for child in children[name]:
            in_degree[child] -= 1
            if in_degree[child] == 0:
                queue.append(child)

    if len(order) != len(in_degree):
        remaining = set(in_degree) - set(order)
        raise PipelineError(
            f"Stages have circular dependencies involving: {sorted(remaining)}",
            context={"stages": ", ".join(sorted(remaining))},
        )

    return [stage_map[name] for name in order]


def _closure(stage_map: dict[str, Stage], target: str) -> set[str]:
    seen: set[str] = set()
    stack = [target]
    while stack:
        name = stack.pop()
        if name in seen:
            continue
        seen.add(name)
        stack.extend(stage_map[name].depends_on)
    return seen
