"""Dependency cache resolver — lockfile in, verified offline cache out.

The offline cache for a lockfile lives at ``<cache_root>/<lockfile sha256>``
and holds one archive per lockfile entry, named the way yarn's offline mirror
expects. It is populated exactly once, by a single writer holding
``<digest>.lock``, inside a staging directory that is renamed into place only
after every package and the aggregate hash have been verified. After that the
directory is read-only and only ever read.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from pathlib import Path

from hermetica.core.errors import (
    CacheLockedError,
    IntegrityMismatch,
    LockfileError,
    MissingDependency,
    atomic_write,
)
from hermetica.core.fingerprint import parse_sri, sri_of_file, to_sri, tree_sri
from hermetica.core.fs import make_read_only, remove_tree
from hermetica.core.models import LockEntry, Lockfile, OfflineCache
from hermetica.resolver.fetch import Fetcher, HttpFetcher

logger = logging.getLogger(__name__)

INDEX_FILE = "index.json"
COMPLETE_MARKER = ".complete"
CACHE_METADATA = frozenset({INDEX_FILE, COMPLETE_MARKER})


class Resolver(ABC):
    """Turn a lockfile into a populated, verified offline cache."""

    @abstractmethod
    def resolve(self, lockfile: Lockfile, expected_hash: str | None) -> OfflineCache:
        """Return the offline cache for ``lockfile``.

        ``expected_hash`` is the caller's declared aggregate hash; ``None``
        skips the comparison (used to discover the hash).
        """
        ...


class YarnOfflineResolver(Resolver):
    """Populate a yarn offline mirror from lockfile URLs."""

    def __init__(
        self,
        cache_root: str | Path,
        fetcher: Fetcher | None = None,
        concurrency: int = 4,
    ) -> None:
        self.cache_root = Path(cache_root)
        self.fetcher = fetcher or HttpFetcher()
        self.concurrency = max(1, concurrency)

    def cache_path(self, lockfile: Lockfile) -> Path:
        return self.cache_root / lockfile.digest

    def resolve(self, lockfile: Lockfile, expected_hash: str | None) -> OfflineCache:
        path = self.cache_path(lockfile)
        if (path / COMPLETE_MARKER).exists():
            logger.debug("Reusing offline cache %s", path)
            cache = load_cache(path)
            verify_cache(cache, lockfile)
            _check_aggregate(tree_sri(path, CACHE_METADATA), expected_hash, path)
            return cache

        self.cache_root.mkdir(parents=True, exist_ok=True)
        with _writer_lock(self.cache_root / f"{lockfile.digest}.lock"):
            staging = self.cache_root / f".{lockfile.digest}.partial"
            remove_tree(staging)
            remove_tree(path)  # leftover without a completion marker
            staging.mkdir()
            try:
                index = self._populate(lockfile, staging)
                aggregate = tree_sri(staging, CACHE_METADATA)
                _check_aggregate(aggregate, expected_hash, path)
                _write_index(staging, lockfile.digest, aggregate, index)
                make_read_only(staging)
                os.replace(staging, path)
            except BaseException:
                remove_tree(staging)
                raise

        logger.info("Populated offline cache %s (%d packages)", path, len(index))
        return OfflineCache(
            path=path,
            lockfile_digest=lockfile.digest,
            aggregate_hash=aggregate,
            index=index,
        )

    def _populate(self, lockfile: Lockfile, staging: Path) -> dict[str, str]:
        """Fetch, verify and store every entry; returns integrity -> file name."""
        index: dict[str, str] = {}
        targets: dict[str, LockEntry] = {}
        for entry in lockfile.entries:
            existing = targets.get(entry.mirror_name)
            if existing is not None and existing.integrity != entry.integrity:
                raise LockfileError(
                    f"{existing.key} and {entry.key} map to the same mirror file "
                    f"{entry.mirror_name} with different hashes.",
                    context={"mirror_name": entry.mirror_name},
                )
            targets[entry.mirror_name] = entry
            index[entry.integrity] = entry.mirror_name

        entries = list(targets.values())
        results: list[bytes | BaseException | None] = [None] * len(entries)

        def _fetch_one(i: int, entry: LockEntry) -> tuple[int, bytes]:
            payload = self.fetcher.fetch(entry.url)
            _verify_payload(entry, payload)
            return i, payload

        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            futures = {pool.submit(_fetch_one, i, e): i for i, e in enumerate(entries)}
            for future in as_completed(futures):
                idx = futures[future]
                try:
                    _, payload = future.result()
                    results[idx] = payload
                except Exception as exc:
                    results[idx] = exc

        # Re-raise the first failure in lockfile order
        for entry, result in zip(entries, results):
            if isinstance(result, BaseException):
                raise result
            (staging / entry.mirror_name).write_bytes(result)
        return index


def compute_cache_hash(
    lockfile: Lockfile,
    cache_root: str | Path,
    fetcher: Fetcher | None = None,
    concurrency: int = 4,
) -> OfflineCache:
    """Populate (or reuse) the cache for ``lockfile`` without a declared hash.

    The returned cache carries the aggregate hash to pin in the project.
    """
    return YarnOfflineResolver(cache_root, fetcher=fetcher, concurrency=concurrency).resolve(lockfile, None)


def load_cache(path: str | Path) -> OfflineCache:
    """Open a completed cache directory as a read-only handle."""
    path = Path(path)
    index_path = path / INDEX_FILE
    if not (path / COMPLETE_MARKER).exists() or not index_path.exists():
        raise MissingDependency(
            f"Offline cache at {path} is not populated.",
            context={"path": str(path)},
        )
    data = json.loads(index_path.read_text())
    return OfflineCache(
        path=path,
        lockfile_digest=data["lockfile"],
        aggregate_hash=data["aggregate_hash"],
        index=dict(data["packages"]),
    )


def verify_cache(cache: OfflineCache, lockfile: Lockfile) -> None:
    """Re-hash every cached package against the lockfile, without network.

    Raises MissingDependency for an absent package and IntegrityMismatch for
    altered content.
    """
    for entry in lockfile.entries:
        target = cache.path_for(entry)
        if target is None or not target.exists():
            raise MissingDependency(
                f"{entry.key} is missing from the offline cache.",
                context={"package": entry.key, "cache": str(cache.path)},
            )
        algorithm, _ = parse_sri(entry.integrity)
        actual = sri_of_file(target, algorithm)
        if actual != entry.integrity:
            raise IntegrityMismatch(
                f"Cached archive for {entry.key} does not match its lockfile hash.",
                expected=entry.integrity,
                actual=actual,
                context={"package": entry.key, "path": str(target)},
            )


def _verify_payload(entry: LockEntry, payload: bytes) -> None:
    try:
        algorithm, expected = parse_sri(entry.integrity)
    except ValueError as exc:
        raise LockfileError(str(exc), context={"package": entry.key}) from exc
    actual = hashlib.new(algorithm, payload).digest()
    if actual != expected:
        raise IntegrityMismatch(
            f"Fetched archive for {entry.key} does not match its lockfile hash.",
            expected=entry.integrity,
            actual=to_sri(algorithm, actual),
            context={"package": entry.key, "url": entry.url},
        )


def _check_aggregate(actual: str, expected: str | None, path: Path) -> None:
    if expected is None or actual == expected:
        return
    raise IntegrityMismatch(
        f"Offline cache hash mismatch.\n  specified: {expected or '(none)'}\n  got:       {actual}",
        expected=expected,
        actual=actual,
        context={"cache": str(path)},
    )


def _write_index(staging: Path, lockfile_digest: str, aggregate: str, index: dict[str, str]) -> None:
    payload = {
        "lockfile": lockfile_digest,
        "aggregate_hash": aggregate,
        "packages": dict(sorted(index.items())),
    }
    atomic_write(staging / INDEX_FILE, json.dumps(payload, indent=2, sort_keys=True) + "\n")
    (staging / COMPLETE_MARKER).write_text("")


@contextmanager
def _writer_lock(lock_path: Path):
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError as exc:
        raise CacheLockedError(
            f"Offline cache is being populated by another process ({lock_path}).",
            context={"lock": str(lock_path)},
        ) from exc
    try:
        os.write(fd, str(os.getpid()).encode())
        os.close(fd)
        yield
    finally:
        try:
            os.unlink(lock_path)
        except FileNotFoundError:
            pass
