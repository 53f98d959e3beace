"""
On-disk cache of terminal test runs.

Layout inside the cache directory:

    <run_id>.json        one CacheEntry per persisted run
    <run_id>/            artifacts (screenshots) captured during the run
    <identifier>.lock    advisory lock held while a run is being written

Run ids end with ``_<identifier>``, so the runs of a test are found by file
name alone.
"""

import shutil
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from filelock import FileLock, Timeout
from pydantic import ValidationError

from retrace.config.settings import get_settings
from retrace.core.types import CacheEntry, TestStatus
from retrace.error_handling import get_error_details
from retrace.monitoring.logger import get_logger
from retrace.runner.test_case import TestCase
from retrace.runner.test_run import CACHE_SCHEMA_VERSION, TestRun

logger = get_logger(__name__)


class TestRunRepository:
    """Loads, saves and prunes the cached runs of a single TestCase."""

    __test__ = False

    VERSION = CACHE_SCHEMA_VERSION

    _repositories: Dict[Tuple[str, str], "TestRunRepository"] = {}

    def __init__(self, test_case: TestCase, cache_dir: Union[str, Path]):
        self.test_case = test_case
        self.cache_dir = Path(cache_dir)
        self.lock_file_path = self.cache_dir / f"{test_case.identifier}.lock"
        self._runs: Optional[List[TestRun]] = None

    @classmethod
    def for_test_case(
        cls, test_case: TestCase, cache_dir: Optional[Union[str, Path]] = None
    ) -> "TestRunRepository":
        """Return the process-wide repository for a test case."""
        resolved = Path(cache_dir or get_settings().cache_dir).resolve()
        key = (str(resolved), test_case.identifier)
        repository = cls._repositories.get(key)
        if repository is None:
            repository = cls(test_case, resolved)
            cls._repositories[key] = repository
        return repository

    @classmethod
    def clear_instances(cls) -> None:
        """Forget every memoized repository."""
        cls._repositories.clear()

    # ------------------------------------------------------------------ #
    # Paths
    # ------------------------------------------------------------------ #
    def get_test_run_file_path(self, run: TestRun) -> Path:
        return self.cache_dir / f"{run.run_id}.json"

    def get_test_run_dir_path(self, run: TestRun) -> Path:
        return self.cache_dir / run.run_id

    def ensure_test_run_dir_path(self, run: TestRun) -> Path:
        """Create the artifact directory of a run and return it."""
        path = self.get_test_run_dir_path(run)
        path.mkdir(parents=True, exist_ok=True)
        return path

    # ------------------------------------------------------------------ #
    # Reading
    # ------------------------------------------------------------------ #
    def get_runs(self) -> List[TestRun]:
        """Return every persisted run of the test case, loading them once."""
        if self._runs is None:
            self._runs = self._load_runs()
        return self._runs

    def reload(self) -> List[TestRun]:
        self._runs = None
        return self.get_runs()

    def _load_runs(self) -> List[TestRun]:
        if not self.cache_dir.is_dir():
            return []

        suffix = f"_{self.test_case.identifier}.json"
        runs: List[TestRun] = []
        for path in sorted(self.cache_dir.glob("*.json")):
            if not path.name.endswith(suffix):
                continue
            try:
                entry = CacheEntry.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as e:
                logger.warning(
                    f"Skipping unreadable cache entry {path.name}",
                    extra=get_error_details(e),
                )
                continue
            runs.append(TestRun.from_cache(self.test_case, entry))

        logger.debug(
            f"Loaded {len(runs)} cached runs",
            extra={"test_id": self.test_case.identifier},
        )
        return runs

    def get_latest_passed_run(self) -> Optional[TestRun]:
        """
        Return the newest run eligible for replay.

        Eligible runs have the current schema version, passed, and were
        executed live. Ties on timestamp keep enumeration order.
        """
        eligible = [
            run
            for run in self.get_runs()
            if run.version == self.VERSION
            and run.status == TestStatus.PASSED
            and not run.executed_from_cache
        ]
        if not eligible:
            return None
        return sorted(eligible, key=lambda run: run.timestamp, reverse=True)[0]

    # ------------------------------------------------------------------ #
    # Writing
    # ------------------------------------------------------------------ #
    def save_run(self, run: TestRun) -> bool:
        """
        Persist a terminal run.

        Returns:
            True when the entry was written. Non-terminal runs, replayed
            runs and lock contention all skip the write.
        """
        if not run.is_terminal:
            logger.debug(f"Not saving non-terminal run {run.run_id}")
            return False
        if run.executed_from_cache:
            logger.debug(f"Not saving replayed run {run.run_id}")
            return False

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(self.lock_file_path))
        try:
            lock.acquire(timeout=0)
        except Timeout:
            logger.warning(
                f"Cache for '{self.test_case.name}' is locked by another process, skipping save",
                extra={"run_id": run.run_id},
            )
            return False

        try:
            path = self.get_test_run_file_path(run)
            path.write_text(run.to_cache_entry().to_json(), encoding="utf-8")
            logger.debug(f"Saved run to {path}", extra={"run_id": run.run_id})
        finally:
            lock.release()

        runs = self.get_runs()
        runs[:] = [cached for cached in runs if cached.run_id != run.run_id]
        runs.append(run)
        return True

    def delete_run(self, run: TestRun) -> None:
        """Remove a run's entry and artifacts. Failures are logged and ignored."""
        try:
            self.get_test_run_file_path(run).unlink(missing_ok=True)
            shutil.rmtree(self.get_test_run_dir_path(run), ignore_errors=True)
        except OSError as e:
            logger.debug(
                f"Failed to delete run {run.run_id}", extra=get_error_details(e)
            )

        if self._runs is not None and run in self._runs:
            self._runs.remove(run)

    def apply_retention_policy(self) -> None:
        """
        Prune cached runs.

        Runs from other schema versions are deleted. Replayed runs are never
        touched. Of the remaining runs only the latest passed run survives,
        or the newest run when none has passed.
        """
        runs = list(self.get_runs())

        for run in runs:
            if run.version != self.VERSION:
                logger.debug(f"Deleting outdated run {run.run_id}")
                self.delete_run(run)

        candidates = [
            run
            for run in runs
            if run.version == self.VERSION and not run.executed_from_cache
        ]
        if not candidates:
            return

        keep = self.get_latest_passed_run()
        if keep is None:
            keep = max(candidates, key=lambda run: run.timestamp)

        for run in candidates:
            if run is not keep:
                logger.debug(f"Deleting superseded run {run.run_id}")
                self.delete_run(run)


def clean_up_cache(
    cache_dir: Optional[Union[str, Path]] = None, force_purge: bool = False
) -> None:
    """
    Tidy the cache directory.

    Args:
        cache_dir: Cache directory (defaults to settings)
        force_purge: Delete the whole directory instead of pruning it
    """
    root = Path(cache_dir or get_settings().cache_dir)
    if not root.exists():
        return

    if force_purge:
        logger.info(f"Purging cache directory {root}")
        shutil.rmtree(root, ignore_errors=True)
        TestRunRepository.clear_instances()
        return

    entries: Dict[str, CacheEntry] = {}
    for path in sorted(root.glob("*.json")):
        identifier = path.stem.rsplit("_", 1)[-1]
        if identifier in entries:
            continue
        try:
            entries[identifier] = CacheEntry.model_validate_json(
                path.read_text(encoding="utf-8")
            )
        except (OSError, ValidationError) as e:
            logger.debug(
                f"Ignoring unreadable cache entry {path.name}",
                extra=get_error_details(e),
            )

    for identifier, entry in entries.items():
        test_case = TestCase(name=entry.test.name, file_path=entry.test.file_path)
        if test_case.identifier != identifier:
            logger.debug(f"Cache entry name does not match test {entry.test.name}")
            continue
        TestRunRepository.for_test_case(test_case, root).apply_retention_policy()

    run_ids = {path.stem for path in root.glob("*.json")}
    for path in root.iterdir():
        if path.is_dir() and path.name not in run_ids:
            logger.debug(f"Removing orphaned artifacts {path.name}")
            shutil.rmtree(path, ignore_errors=True)
        elif path.suffix == ".lock" and path.stem not in entries:
            lock = FileLock(str(path))
            try:
                lock.acquire(timeout=0)
            except Timeout:
                continue
            try:
                path.unlink(missing_ok=True)
            finally:
                lock.release()
