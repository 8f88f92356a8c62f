import dataclasses
import logging
import sys
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from .discovery import Package
from .errors import CollectionError
from .result import Result
from .settings import Settings
from .utils import Shell, Utils


@dataclasses.dataclass
class PackageRun:
    package: Package
    exit_code: int
    output: str
    # None when the test run left no coverage data (e.g. build failure)
    artifact: Optional[Path] = None
    duration: Optional[float] = None

    def is_ok(self):
        return self.exit_code == 0

    def to_result(self) -> Result:
        return Result(
            name=self.package.import_path,
            status=Result.Status.SUCCESS if self.is_ok() else Result.Status.FAILED,
            exit_code=self.exit_code,
            duration=self.duration,
            files=[self.artifact] if self.artifact else [],
            info=self.output.rstrip("\n"),
        )


class PackageTestExecutor(ABC):
    @abstractmethod
    def run(
        self, package: Package, mode: str, artifact: Path, stream: bool
    ) -> Tuple[int, str]:
        """Runs tests of @package writing its coverage profile into @artifact, returns (exit code, output)"""


class GoTestExecutor(PackageTestExecutor):
    def __init__(self, project_root, tags=""):
        self.project_root = project_root
        self.tags = tags

    def run(self, package, mode, artifact, stream):
        tags = f" -tags={self.tags}" if self.tags else ""
        command = f"go test -v{tags} -covermode={mode} -coverprofile={artifact} {package.import_path}"
        return Shell.run(command, cwd=self.project_root, stream=stream, verbose=stream)


class CoverageCollector:
    """
    Runs every package's tests in isolation with coverage enabled, one coverage
    artifact per package.

    A failing package does not stop the others. Returned runs are sorted by package
    short name, so the merge input order does not depend on completion order.
    """

    def __init__(
        self,
        executor: PackageTestExecutor,
        artifact_dir,
        concurrency=1,
        ignore_names: Iterable[str] = (),
    ):
        self.executor = executor
        self.artifact_dir = Path(artifact_dir)
        self.concurrency = max(1, concurrency)
        self.ignore_names = list(ignore_names)
        self._artifacts = []  # type: List[Path]

    def artifact_path(self, package: Package) -> Path:
        return self.artifact_dir / (
            f"{Settings.PACKAGE_PROFILE_PREFIX}{Utils.mangle(package.import_path)}.cov"
        )

    def _prepare(self, packages: Sequence[Package]):
        try:
            self.artifact_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CollectionError(
                f"Failed to create coverage directory [{self.artifact_dir}]: {e}"
            ) from e
        for package in packages:
            artifact = self.artifact_path(package)
            try:
                # drops a stale profile of a previous run as well
                artifact.touch()
                artifact.unlink()
            except OSError as e:
                raise CollectionError(
                    f"Coverage artifact [{artifact}] is not writable: {e}"
                ) from e
            self._artifacts.append(artifact)

    def _run_one(self, package: Package, mode: str, stream: bool) -> PackageRun:
        sw = Utils.Stopwatch()
        artifact = self.artifact_path(package)
        exit_code, output = self.executor.run(package, mode, artifact, stream)
        if not artifact.is_file() or artifact.stat().st_size == 0:
            logging.warning(
                "No coverage data for [%s], exit code %s", package.import_path, exit_code
            )
            artifact = None
        return PackageRun(
            package=package,
            exit_code=exit_code,
            output=output,
            artifact=artifact,
            duration=sw.duration,
        )

    @staticmethod
    def _print_buffered(run: PackageRun):
        sys.stdout.write(
            f"\n--- [{run.package.import_path}] exit code {run.exit_code} ---\n"
        )
        sys.stdout.write(run.output)
        if run.output and not run.output.endswith("\n"):
            sys.stdout.write("\n")
        sys.stdout.flush()

    def collect(self, packages: Sequence[Package], mode: str) -> List[PackageRun]:
        packages = [p for p in packages if not p.is_ignored(self.ignore_names)]
        self._prepare(packages)

        runs = []
        if self.concurrency == 1:
            for package in packages:
                runs.append(self._run_one(package, mode, stream=True))
        else:
            executor = ThreadPoolExecutor(max_workers=self.concurrency)
            try:
                futures = [
                    executor.submit(self._run_one, package, mode, False)
                    for package in packages
                ]
                for future in as_completed(futures):
                    run = future.result()
                    # one block per package, outputs of parallel runs never interleave
                    self._print_buffered(run)
                    runs.append(run)
            except BaseException:
                Shell.terminate_all()
                executor.shutdown(wait=False, cancel_futures=True)
                raise
            executor.shutdown(wait=True)

        runs.sort(key=lambda r: (r.package.name, r.package.import_path))
        failed = [r.package.import_path for r in runs if not r.is_ok()]
        logging.info(
            "Collected %s packages, %s failed%s",
            len(runs),
            len(failed),
            f": {failed}" if failed else "",
        )
        return runs

    def cleanup(self):
        """Removes per-package artifacts left behind, e.g. by a cancelled run"""
        for artifact in self._artifacts:
            Utils.remove_file(artifact)
