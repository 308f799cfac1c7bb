"""Pipeline runner — walk the stage DAG, reuse stored artifacts, record runs."""

from __future__ import annotations

import logging
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

import requests

from hermetica.assemble import ArtifactStore, Assembler, derivation_fingerprint
from hermetica.builder import HermeticBuilder, source_tree_hash
from hermetica.config import Settings, get_settings
from hermetica.core.commands import CommandRunner
from hermetica.core.errors import HermeticaError, InspectorError, PipelineError
from hermetica.core.fingerprint import Fingerprint
from hermetica.core.fs import remove_tree
from hermetica.core.logging import HermeticaLogger, Verbosity
from hermetica.core.models import Artifact, BuildOutput, Image, Lockfile, OfflineCache, Project
from hermetica.image import Runtime, build_image
from hermetica.lockfile import read_lockfile
from hermetica.pipeline.dag import ARTIFACT_STAGES, STAGES, resolve_order
from hermetica.resolver import Fetcher, HttpFetcher, YarnOfflineResolver
from hermetica.verify import (
    GrypeScanner,
    Inspector,
    Keyring,
    NativeSbomGenerator,
    OsvScanner,
    SignatureVerifier,
    SmokeTest,
    SyftSbomGenerator,
    VerificationReport,
    run_inspectors,
)

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    """Per-invocation overrides. ``None`` falls back to Settings."""

    smoke_timeout: float | None = None
    sbom_backend: str | None = None
    sbom_dir: Path = field(default_factory=lambda: Path("."))
    scan_backend: str | None = None
    vuln_limit: int | None = None
    image_out: Path | None = None
    repo_dir: Path | None = None  # where signature verification looks for .git
    rebuild: bool = False
    keep_work_dir: bool = False


@dataclass
class StageStats:
    """Statistics for a single stage."""

    name: str
    status: str = "pending"  # built, cached, failed
    detail: str = ""
    time_seconds: float = 0.0


@dataclass
class RunResult:
    """Summary of a pipeline run."""

    project: str
    target: str
    fingerprint: str = ""
    artifact: Artifact | None = None
    image: Image | None = None
    reports: dict[str, VerificationReport] = field(default_factory=dict)
    stage_stats: list[StageStats] = field(default_factory=list)
    total_time: float = 0.0
    run_log: dict = field(default_factory=dict)
    log_path: Path | None = None
    rebuild_reasons: list[str] = field(default_factory=list)  # empty when the artifact was reused

    @property
    def built(self) -> int:
        return sum(1 for s in self.stage_stats if s.status == "built")

    @property
    def cached(self) -> int:
        return sum(1 for s in self.stage_stats if s.status == "cached")


@dataclass
class _RunContext:
    project: Project
    settings: Settings
    options: RunOptions
    commands: CommandRunner
    fetcher: Fetcher
    session: requests.Session
    log: HermeticaLogger
    store: ArtifactStore
    result: RunResult
    lockfile: Lockfile | None = None
    fingerprint: Fingerprint | None = None
    cache: OfflineCache | None = None
    build: BuildOutput | None = None
    work_dir: Path | None = None
    reused: bool = False  # artifact found in the store


def run(
    project: Project,
    target: str = "assemble",
    *,
    settings: Settings | None = None,
    options: RunOptions | None = None,
    commands: CommandRunner | None = None,
    fetcher: Fetcher | None = None,
    session: requests.Session | None = None,
    verbosity: int = 0,
    record: bool = True,
) -> RunResult:
    """Execute the stages needed for ``target``, failing fast on any error.

    Args:
        project: The loaded project definition.
        target: Final stage to reach (see ``hermetica.pipeline.dag.STAGES``).
        settings: Settings override; defaults to ``get_settings()``.
        options: Per-invocation overrides for verification stages.
        commands: Runner for external tools (yarn, node, git, gpg, syft, grype).
        fetcher: Package fetcher used by the resolver.
        session: HTTP session for OSV queries and the trust anchor.
        verbosity: Verbosity level (0=default, 1=verbose, 2=debug).
        record: Whether to record the run and store paths in the registry.

    Returns:
        RunResult with per-stage statistics, artifact and reports.
    """
    start_time = time.time()
    settings = settings or get_settings()
    options = options or RunOptions()
    order = resolve_order(STAGES, target)

    settings.ensure_storage_dir()
    run_logger = HermeticaLogger(
        verbosity=Verbosity(min(verbosity, Verbosity.DEBUG)),
        logs_dir=settings.logs_dir,
    )
    result = RunResult(project=project.pname, target=target, log_path=run_logger.log_path)
    session = session or requests.Session()
    ctx = _RunContext(
        project=project,
        settings=settings,
        options=options,
        commands=commands or CommandRunner(),
        fetcher=fetcher or HttpFetcher(timeout=settings.fetch_timeout, session=session),
        session=session,
        log=run_logger,
        store=ArtifactStore(settings.store_dir),
        result=result,
    )

    run_logger.run_start(project.pname, target, len(order))
    run_id = _record_start(settings, project.pname, target) if record else None

    try:
        if any(stage.name in ARTIFACT_STAGES for stage in order):
            _plan_derivation(ctx)

        for stage in order:
            stats = StageStats(name=stage.name)
            result.stage_stats.append(stats)
            stage_start = time.time()

            if stage.name in ARTIFACT_STAGES and ctx.reused:
                stats.status = "cached"
                stats.detail = str(result.artifact.path)
                run_logger.stage_cached(stage.name, stats.detail)
                continue

            run_logger.stage_start(stage.name)
            try:
                stats.detail = _HANDLERS[stage.name](ctx)
            except HermeticaError as e:
                stats.status = "failed"
                stats.time_seconds = time.time() - stage_start
                run_logger.stage_failed(stage.name, e.message)
                raise
            stats.status = "built"
            stats.time_seconds = time.time() - stage_start
            run_logger.stage_finish(stage.name, stats.detail)
    except HermeticaError as e:
        result.total_time = time.time() - start_time
        run_logger.run_finish(result.total_time, status="failed")
        result.run_log = run_logger.run_log.to_dict()
        if run_id is not None:
            _record_failure(settings, run_id, e.message, result.run_log)
        raise
    else:
        result.total_time = time.time() - start_time
        run_logger.run_finish(result.total_time)
        result.run_log = run_logger.run_log.to_dict()
    finally:
        run_logger.close()
        if ctx.work_dir is not None and not options.keep_work_dir:
            remove_tree(ctx.work_dir)

    if run_id is not None:
        _record_success(settings, run_id, result)
    return result


def _plan_derivation(ctx: _RunContext) -> None:
    """Compute the derivation fingerprint and look for a stored artifact."""
    project = ctx.project
    ctx.lockfile = read_lockfile(project.lockfile_path)
    source_hash = source_tree_hash(project.source_dir)
    ctx.fingerprint = derivation_fingerprint(project, source_hash, ctx.lockfile.digest)
    ctx.result.fingerprint = ctx.fingerprint.digest

    if ctx.options.rebuild:
        ctx.result.rebuild_reasons = ["rebuild requested"]
        ctx.log.rebuild(ctx.result.rebuild_reasons)
        return
    existing = ctx.store.lookup(ctx.fingerprint, project.pname, project.version)
    if existing is not None and not ctx.store.verify(existing):
        logger.warning("Stored artifact %s no longer matches its tree hash", existing.path)
        ctx.log.warning("assemble", f"stored artifact {existing.path} was modified; rebuilding")
        ctx.result.rebuild_reasons = ["stored artifact modified"]
        ctx.log.rebuild(ctx.result.rebuild_reasons)
        return
    if existing is not None:
        logger.debug("Reusing stored artifact %s", existing.path)
        ctx.result.artifact = existing
        ctx.reused = True
        return

    # Explain the miss against the closest stored derivation of this package
    candidates = [ctx.fingerprint.explain_diff(fp) for fp in ctx.store.fingerprints(project.pname)]
    ctx.result.rebuild_reasons = min(candidates, key=len, default=ctx.fingerprint.explain_diff(None))
    logger.debug("No stored artifact for %s: %s", project.pname, ", ".join(ctx.result.rebuild_reasons))
    ctx.log.rebuild(ctx.result.rebuild_reasons)


# -- Stage handlers: each returns a one-line detail for the log --


def _stage_resolve(ctx: _RunContext) -> str:
    resolver = YarnOfflineResolver(
        ctx.settings.cache_dir,
        fetcher=ctx.fetcher,
        concurrency=ctx.settings.fetch_concurrency,
    )
    ctx.cache = resolver.resolve(ctx.lockfile, ctx.project.cache_hash)
    return f"{len(ctx.lockfile.entries)} packages"


def _stage_build(ctx: _RunContext) -> str:
    ctx.work_dir = Path(tempfile.mkdtemp(prefix=f"hermetica-build-{ctx.project.pname}-"))
    builder = HermeticBuilder(ctx.project.toolchain, runner=ctx.commands, logger=ctx.log)
    ctx.build = builder.build(ctx.project, ctx.lockfile, ctx.cache, ctx.work_dir)
    return str(ctx.build.root)


def _stage_assemble(ctx: _RunContext) -> str:
    assembler = Assembler(ctx.store, logger=ctx.log)
    artifact = assembler.assemble(ctx.build, ctx.project, ctx.fingerprint)
    ctx.result.artifact = artifact
    return str(artifact.path)


def _stage_image(ctx: _RunContext) -> str:
    project = ctx.project
    artifact = _require_artifact(ctx)
    runtime = Runtime.discover(project.toolchain, project.image.runtime_prefix, runner=ctx.commands)
    out = ctx.options.image_out or (
        ctx.settings.images_dir / f"{project.pname}-{project.version}-{artifact.fingerprint[:12]}.tar"
    )
    image = build_image(artifact, runtime, project, out)
    ctx.result.image = image
    return f"{image.reference} -> {image.path}"


def _smoke_inspector(ctx: _RunContext) -> Inspector:
    timeout = ctx.options.smoke_timeout
    return SmokeTest(
        ctx.project.pname,
        timeout=timeout if timeout is not None else ctx.settings.smoke_timeout,
        port=ctx.project.port,
    )


def _sbom_inspector(ctx: _RunContext) -> Inspector:
    backend = ctx.options.sbom_backend or ctx.settings.sbom_backend
    pname = ctx.project.pname
    out_dir = ctx.options.sbom_dir
    if backend == "native":
        return NativeSbomGenerator(pname, out_dir)
    if backend == "syft":
        return SyftSbomGenerator(pname, out_dir, runner=ctx.commands)
    raise PipelineError(f"Unknown SBOM backend: {backend}", context={"backend": backend})


def _scan_inspector(ctx: _RunContext) -> Inspector:
    backend = ctx.options.scan_backend or ctx.settings.scan_backend
    limit = ctx.options.vuln_limit if ctx.options.vuln_limit is not None else ctx.settings.vuln_limit
    if backend == "grype":
        return GrypeScanner(ctx.commands, limit=limit)
    if backend == "osv":
        return OsvScanner(ctx.settings.osv_api_url, limit=limit, session=ctx.session)
    raise PipelineError(f"Unknown scan backend: {backend}", context={"backend": backend})


def _check_smoke(report: VerificationReport) -> None:
    if not report.passed:
        raise InspectorError(
            f"Smoke test failed: {report.summary}",
            context={"artifact": report.subject},
            output="\n".join(report.details),
        )


def _stage_smoke(ctx: _RunContext) -> str:
    report = _inspect(ctx, "smoke", _smoke_inspector(ctx), _require_artifact(ctx).path)
    _check_smoke(report)
    return report.summary


def _stage_sbom(ctx: _RunContext) -> str:
    return _inspect(ctx, "sbom", _sbom_inspector(ctx), _require_artifact(ctx).path).summary


def _stage_scan(ctx: _RunContext) -> str:
    return _inspect(ctx, "scan", _scan_inspector(ctx), _require_artifact(ctx).path).summary


def _stage_verify(ctx: _RunContext) -> str:
    names = ("smoke", "sbom", "scan")
    inspectors = [_smoke_inspector(ctx), _sbom_inspector(ctx), _scan_inspector(ctx)]
    reports = run_inspectors(inspectors, _require_artifact(ctx).path, concurrency=ctx.settings.verify_concurrency)
    ctx.result.reports.update(zip(names, reports))
    _check_smoke(ctx.result.reports["smoke"])
    return "; ".join(f"{name}: {report.summary}" for name, report in zip(names, reports))


def _stage_signature(ctx: _RunContext) -> str:
    verifier = SignatureVerifier(
        Keyring(ctx.settings.gnupg_home),
        ctx.project.trust_anchor_url,
        runner=ctx.commands,
        session=ctx.session,
        run_logger=ctx.log,
    )
    repo = ctx.options.repo_dir or Path.cwd()
    return _inspect(ctx, "signature", verifier, repo).summary


_HANDLERS = {
    "resolve": _stage_resolve,
    "build": _stage_build,
    "assemble": _stage_assemble,
    "image": _stage_image,
    "smoke": _stage_smoke,
    "sbom": _stage_sbom,
    "scan": _stage_scan,
    "verify": _stage_verify,
    "signature": _stage_signature,
}


def _inspect(ctx: _RunContext, stage: str, inspector: Inspector, subject: Path) -> VerificationReport:
    report = inspector.inspect(subject)
    ctx.result.reports[stage] = report
    return report


def _require_artifact(ctx: _RunContext) -> Artifact:
    if ctx.result.artifact is None:
        raise PipelineError("No artifact available; the assemble stage did not run.")
    return ctx.result.artifact


# -- Registry bookkeeping --


def _record_start(settings: Settings, project: str, target: str) -> str:
    from hermetica.db.engine import get_registry_session, init_registry
    from hermetica.db.registry import start_run

    init_registry(settings)
    with get_registry_session(settings) as session:
        return start_run(session, project, target).id


def _record_success(settings: Settings, run_id: str, result: RunResult) -> None:
    from hermetica.db.engine import get_registry_session
    from hermetica.db.registry import complete_run, record_store_path

    with get_registry_session(settings) as session:
        if result.artifact is not None:
            record_store_path(session, result.artifact)
        complete_run(session, run_id, result.run_log, fingerprint=result.fingerprint or None)


def _record_failure(settings: Settings, run_id: str, error: str, run_log: dict) -> None:
    from hermetica.db.engine import get_registry_session
    from hermetica.db.registry import fail_run

    with get_registry_session(settings) as session:
        fail_run(session, run_id, error, stats=run_log)
