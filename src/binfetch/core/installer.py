"""Install, remove, update and run orchestration.

Batch operations fan out one worker thread per entry. Each worker owns a
distinct destination path, so entries never contend; a failure is recorded
against its item and never cancels siblings.
"""

import os
import shutil
import signal
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator

import httpx
import structlog
from rich.progress import Progress

from binfetch.core.config import BinfetchConfig
from binfetch.core.downloader import Fetcher, ProgressCallback
from binfetch.core.errors import (
    BatchResolveError,
    BinfetchError,
    BusyError,
    HookError,
    NotFoundError,
)
from binfetch.core.hooks import run_hook
from binfetch.core.index import IndexLoader
from binfetch.core.resolver import resolve, resolve_many
from binfetch.core.tracker import TrackedBinary, Tracker
from binfetch.core.verify import KeyCache, hash_file
from binfetch.core.xattrs import ProvenanceTags
from binfetch.models.entry import Entry, is_absolute_url


logger = structlog.get_logger(__name__)

CACHE_MAX_ENTRIES = 15
CACHE_DELETE_BATCH = 5


@dataclass
class ItemResult:
    """Outcome of one entry in a batch."""

    token: str
    entry: Entry | None = None
    path: Path | None = None
    error: Exception | None = None
    warning: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchResult:
    """Per-item outcomes of a batch operation, in request order."""

    items: list[ItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[ItemResult]:
        return [i for i in self.items if i.ok]

    @property
    def failed(self) -> list[ItemResult]:
        return [i for i in self.items if not i.ok]

    def report(self) -> str:
        """One combined message for every failed item."""
        return "\n".join(f"{i.token}: {i.error}" for i in self.failed)


@dataclass
class Outdated:
    """Installed binaries whose content differs from the index."""

    entries: list[tuple[Path, Entry]] = field(default_factory=list)
    checked: int = 0
    skipped: int = 0


@dataclass
class UpdateReport:
    checked: int
    skipped: int
    result: BatchResult

    @property
    def updated(self) -> int:
        return len(self.result.succeeded)


def running_executables() -> set[str]:
    """Resolved paths of executables backing live processes (Linux only)."""
    proc = Path("/proc")
    if not proc.is_dir():
        return set()
    paths = set()
    for pid_dir in proc.iterdir():
        if not pid_dir.name.isdigit():
            continue
        try:
            paths.add(os.readlink(pid_dir / "exe").removesuffix(" (deleted)"))
        except OSError:
            continue
    return paths


@contextmanager
def cancel_on_signals(cancel: threading.Event) -> Iterator[None]:
    """Turn SIGINT/SIGTERM into a cancel request while a batch runs."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(signum, frame):
        logger.warning("interrupted, saving partial downloads", signal=signum)
        cancel.set()

    previous = {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def cache_files(cache_dir: Path) -> list[Path]:
    if not cache_dir.is_dir():
        return []
    return [p for p in cache_dir.iterdir() if p.is_file() and not p.name.startswith(".")]


def prune_cache(cache_dir: Path) -> list[Path]:
    """Delete the oldest cached binaries once the cache is over its ceiling.

    Age is modification time; ties keep directory enumeration order.
    """
    files = cache_files(cache_dir)
    if len(files) <= CACHE_MAX_ENTRIES:
        return []

    files.sort(key=lambda p: p.stat().st_mtime)
    removed = []
    for path in files[:CACHE_DELETE_BATCH]:
        try:
            path.unlink()
            removed.append(path)
        except OSError as e:
            logger.warning("failed to evict cached binary", path=str(path), error=str(e))
    logger.debug("pruned cache", removed=len(removed))
    return removed


class Installer:
    """Drives resolve, fetch, verify and place for batches of entries."""

    def __init__(
        self,
        config: BinfetchConfig,
        client: httpx.Client,
        loader: IndexLoader | None = None,
        fetcher: Fetcher | None = None,
        provenance: ProvenanceTags | None = None,
        tracker: Tracker | None = None,
        cancel: threading.Event | None = None,
        progress: Progress | None = None,
    ):
        self.config = config
        self.client = client
        self.cancel = cancel or threading.Event()
        self.loader = loader or IndexLoader(client, config.cache_dir)
        self.fetcher = fetcher or Fetcher(
            client, key_cache=KeyCache(config.cache_dir, client), cancel=self.cancel
        )
        self.provenance = provenance or ProvenanceTags()
        self.tracker = tracker or Tracker.load(config.tracker_file)
        self.progress = progress

        self._index: list[Entry] | None = None
        self._lock = threading.Lock()
        self._in_flight: set[Path] = set()
        self._tracker_dirty = False

    def __enter__(self):
        return self

    def __exit__(self, *args):
        if self._tracker_dirty:
            self.tracker.save()

    @property
    def index(self) -> list[Entry]:
        """The merged repository index, fetched once per run."""
        with self._lock:
            if self._index is None:
                self._index = self.loader.load(self.config.repositories)
            return self._index

    # -- helpers -----------------------------------------------------------

    @contextmanager
    def _claim(self, path: Path, running: set[str]) -> Iterator[None]:
        if str(path.resolve()) in running:
            raise BusyError(f"{path} is in use by a running process")
        with self._lock:
            if path in self._in_flight:
                raise BusyError(f"{path} is already being modified")
            self._in_flight.add(path)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(path)

    def _progress_callback(self, label: str) -> ProgressCallback | None:
        if self.progress is None:
            return None
        task = self.progress.add_task(label, total=None)

        def update(completed: int, total: int | None) -> None:
            self.progress.update(task, completed=completed, total=total)

        return update

    def _fan_out(self, jobs: list[tuple[str, Callable[[], ItemResult]]]) -> dict[str, ItemResult]:
        results: dict[str, ItemResult] = {}
        if not jobs:
            return results

        with cancel_on_signals(self.cancel), ThreadPoolExecutor(max_workers=len(jobs)) as pool:
            futures = {pool.submit(job): token for token, job in jobs}
            for future in as_completed(futures):
                token = futures[future]
                try:
                    results[token] = future.result()
                except (BinfetchError, OSError) as e:
                    logger.debug("item failed", token=token, error=str(e))
                    results[token] = ItemResult(token=token, error=e)
                except Exception as e:
                    # recorded against this item only; siblings keep their results
                    logger.error("unexpected item failure", token=token, exc_info=e)
                    results[token] = ItemResult(token=token, error=e)
        return results

    def _preferred_request(self, requested: Entry, target_dir: Path) -> Entry:
        """Use the provenance of an already installed file as resolution key."""
        if requested.pkg_id or is_absolute_url(requested.name):
            return requested
        existing = self.provenance.get(target_dir / requested.base_name)
        if existing is None or existing.name != requested.name:
            return requested
        return replace(
            requested,
            pkg_id=existing.pkg_id,
            repository=requested.repository or existing.repository,
        )

    def _record(self, path: Path, entry: Entry) -> None:
        with self._lock:
            self.tracker.set(TrackedBinary(
                name=path.name,
                full_name=entry.to_token(),
                version=entry.version,
                installed_at=datetime.now(),
            ))
            self._tracker_dirty = True

    def _forget(self, name: str) -> None:
        with self._lock:
            if self.tracker.delete(name) is not None:
                self._tracker_dirty = True

    def _hook_runner(self, name: str, args: list[str], env: dict[str, str]) -> int:
        return self.run(name, args, env=env)

    # -- install -----------------------------------------------------------

    def _install_one(
        self, token: str, entry: Entry, destination: Path, running: set[str], integrate: bool
    ) -> ItemResult:
        with self._claim(destination, running):
            path = self.fetcher.fetch(entry, destination, self._progress_callback(entry.name))
            self.provenance.set(path, entry)

        result = ItemResult(token=token, entry=entry, path=path)
        if not integrate:
            return result

        self._record(path, entry)
        try:
            run_hook(self.config, path, integration=True, run_from_cache=self._hook_runner)
        except HookError as e:
            # the install itself stands
            result.error = e
        return result

    def install_entries(
        self, entries: dict[str, Entry], target_dir: Path | None = None
    ) -> BatchResult:
        """Fetch already-resolved entries concurrently into ``target_dir``."""
        target_dir = target_dir or self.config.install_dir
        integrate = target_dir == self.config.install_dir
        running = running_executables()

        jobs = []
        claimed: dict[Path, str] = {}
        skipped: dict[str, ItemResult] = {}
        for token, entry in entries.items():
            destination = target_dir / entry.base_name
            if destination in claimed:
                logger.debug("duplicate destination in batch", token=token, first=claimed[destination])
                skipped[token] = ItemResult(
                    token=token, entry=entry, path=destination,
                    warning=f"same file as {claimed[destination]}",
                )
                continue
            claimed[destination] = token
            jobs.append((
                token,
                lambda t=token, e=entry, d=destination: self._install_one(t, e, d, running, integrate),
            ))

        results = self._fan_out(jobs)
        results.update(skipped)
        return BatchResult([results[token] for token in entries])

    def install(self, tokens: list[str], target_dir: Path | None = None) -> BatchResult:
        """Resolve and install tokens; duplicates are fetched once."""
        target_dir = target_dir or self.config.install_dir
        unique = list(dict.fromkeys(t.strip() for t in tokens if t.strip()))
        requests = {t: self._preferred_request(Entry.parse(t), target_dir) for t in unique}

        if all(is_absolute_url(r.name) for r in requests.values()):
            index = []
        else:
            index = self.index
        resolved, failures = resolve_many(requests, index)

        batch = self.install_entries(resolved, target_dir)
        by_token = {item.token: item for item in batch.items}
        by_token.update({t: ItemResult(token=t, error=e) for t, e in failures.items()})
        return BatchResult([by_token[t] for t in unique])

    # -- remove ------------------------------------------------------------

    def _remove_one(self, token: str, running: set[str]) -> ItemResult:
        requested = Entry.parse(token)
        path = self.config.install_dir / requested.base_name
        if not path.exists() and not path.is_symlink():
            return ItemResult(
                token=token, warning=f"'{requested.base_name}' does not exist in {self.config.install_dir}"
            )

        owner = self.provenance.get(path)
        if owner is None and not self.config.retake_ownership:
            raise BinfetchError(f"{path.name} was not installed by binfetch")
        if owner is not None and requested.pkg_id and owner.pkg_id != requested.pkg_id:
            raise NotFoundError(token, f"{path.name} is installed as {owner}, not {token}")

        with self._claim(path, running):
            path.unlink()
        self._forget(path.name)

        result = ItemResult(token=token, entry=owner, path=path)
        try:
            run_hook(self.config, path, integration=False, run_from_cache=self._hook_runner)
        except HookError as e:
            result.error = e
        return result

    def remove(self, tokens: list[str]) -> BatchResult:
        unique = list(dict.fromkeys(t.strip() for t in tokens if t.strip()))
        running = running_executables()
        results = self._fan_out([
            (token, lambda t=token: self._remove_one(t, running)) for token in unique
        ])
        return BatchResult([results[t] for t in unique])

    # -- update ------------------------------------------------------------

    def installed(self, tokens: list[str] | None = None) -> list[tuple[Path, Entry]]:
        """Installed files we own, with their provenance.

        With ``retake_ownership`` untagged files are adopted under their
        file name.
        """
        install_dir = self.config.install_dir
        if tokens:
            paths = [install_dir / Entry.parse(t).base_name for t in dict.fromkeys(tokens)]
        elif install_dir.is_dir():
            paths = sorted(
                p for p in install_dir.iterdir()
                if not p.name.startswith(".") and not p.name.endswith(".tmp")
            )
        else:
            paths = []

        owned = []
        for path in paths:
            if path.is_symlink() or not path.is_file():
                continue
            owner = self.provenance.get(path)
            if owner is None:
                if not self.config.retake_ownership:
                    continue
                owner = Entry(name=path.name)
            owned.append((path, owner))
        return owned

    def _check_one(self, path: Path, owner: Entry) -> tuple[str, Entry | None]:
        try:
            current = resolve(replace(owner, version=""), self.index)
        except NotFoundError:
            return "skipped", None
        if current.skips_verification:
            logger.info("no checksum in index, skipping", binary=path.name)
            return "skipped", None
        if hash_file(path) == current.content_hash.lower():
            return "current", None
        return "outdated", current

    def outdated(self, tokens: list[str] | None = None) -> Outdated:
        """Installed binaries whose BLAKE3 differs from the index's."""
        owned = self.installed(tokens)
        if not owned:
            return Outdated()
        index = self.index
        logger.debug("checking installed binaries", count=len(owned), index=len(index))

        report = Outdated()
        lock = threading.Lock()

        def check(path: Path, owner: Entry) -> ItemResult:
            status, current = self._check_one(path, owner)
            with lock:
                if status == "skipped":
                    report.skipped += 1
                else:
                    report.checked += 1
                if current is not None:
                    report.entries.append((path, current))
            return ItemResult(token=path.name, entry=current, path=path)

        results = self._fan_out([
            (path.name, lambda p=path, o=owner: check(p, o)) for path, owner in owned
        ])
        report.skipped += sum(1 for r in results.values() if not r.ok)
        report.entries.sort(key=lambda pair: pair[0].name)
        return report

    def update(self, tokens: list[str] | None = None) -> UpdateReport:
        """Re-install every owned binary whose content differs, in one batch."""
        report = self.outdated(tokens)
        entries = {path.name: entry for path, entry in report.entries}
        result = self.install_entries(entries)
        return UpdateReport(checked=report.checked, skipped=report.skipped, result=result)

    # -- run ---------------------------------------------------------------

    def _execute(self, path: Path, args: list[str], env: dict[str, str] | None) -> int:
        logger.debug("running", binary=str(path), args=args)
        try:
            return subprocess.run([str(path), *args], env=env).returncode
        except OSError as e:
            raise BinfetchError(f"Failed to run {path.name}: {e}") from e

    def cached_binary(self, requested: Entry) -> Path | None:
        """The cached file satisfying ``requested``, if any."""
        cached = self.config.cache_dir / requested.base_name
        if not cached.is_file() or not os.access(cached, os.X_OK):
            return None
        if not requested.pkg_id:
            return cached
        owner = self.provenance.get(cached)
        if owner is not None and owner.pkg_id == requested.pkg_id:
            return cached
        return None

    def run(
        self,
        token: str,
        args: list[str],
        transparent: bool = False,
        env: dict[str, str] | None = None,
    ) -> int:
        """Run a binary from PATH (transparent mode) or from the cache.

        Returns the program's exit code. The cache is pruned afterwards.
        """
        requested = Entry.parse(token)
        if transparent:
            found = shutil.which(requested.base_name)
            if found:
                return self._execute(Path(found), args, env)

        cached = self.cached_binary(requested)
        if cached is None:
            logger.info("not cached, fetching", binary=requested.base_name)
            try:
                result = self.install([token], target_dir=self.config.cache_dir)
            except BatchResolveError as e:
                raise next(iter(e.failures.values())) from None
            item = result.items[0]
            if item.error is not None:
                raise item.error
            cached = item.path

        # mtime doubles as last-use time for eviction
        os.utime(cached)
        try:
            return self._execute(cached, args, env)
        finally:
            prune_cache(self.config.cache_dir)
