import logging
import time
from typing import Callable, Dict, List, Optional, Type

from .collector import CoverageCollector, GoTestExecutor, PackageTestExecutor
from .discovery import Package, PackageDiscovery, go_list
from .errors import DiscoveryError, MergeError, UnsupportedSuiteError
from .profile import CoverageMerger
from .report import FuncSummaryProvider, ReportEmitter, go_tool_cover_func
from .result import Result
from .runner import CallableStage, Invocable, ShellCommand, Stage
from .settings import PipelineConfig, Settings
from .utils import Shell, Utils


class CoverageStage(Invocable):
    """
    Unit tests with coverage: collect every package, merge the profiles, write reports.

    The stage fails after all reports are written if any package failed, with the exit code
    of the first failed package in merge order.
    """

    def __init__(
        self,
        config: PipelineConfig,
        packages: Callable[[], List[Package]],
        executor: PackageTestExecutor,
        func_summary: Optional[FuncSummaryProvider] = None,
        source_dir="",
    ):
        self.config = config
        self.packages = packages
        self.collector = CoverageCollector(
            executor,
            config.coverage_reports_dir,
            concurrency=config.concurrency,
            ignore_names=config.ignore_set,
        )
        self.merger = CoverageMerger(config.cover_mode, config.merged_profile_path)
        self.emitter = ReportEmitter(
            config.test_reports_dir,
            config.coverage_report_path,
            func_summary=func_summary,
            source_dir=source_dir,
            continue_on_errors=config.continue_on_emit_error,
        )

    def invoke(self) -> Result:
        sw = Utils.Stopwatch()
        # previous run's merged profile and report
        for path in (self.config.merged_profile_path, self.config.coverage_report_path):
            Utils.remove_file(path)
        runs = self.collector.collect(self.packages(), self.config.cover_mode)
        try:
            profile = self.merger.merge([run.artifact for run in runs if run.artifact])
        except MergeError:
            self.collector.cleanup()
            raise
        output = self.emitter.emit(profile, runs)

        result = Result.create_from(
            name="unit tests with coverage",
            results=[run.to_result() for run in runs],
            stopwatch=sw,
            files=[output.coverage_report_path, profile.path, *output.test_report_paths],
        )
        failed = [r for r in result.results if not r.is_ok()]
        result.set_info(f"Failures: {len(failed)}/{len(result.results)}")
        for error in output.errors:
            result.set_info(f"Report error: {error}")
        result.set_info(
            f"Coverage: {profile.covered_statements()}/{profile.statements()} statements"
        )
        return result

    def cleanup(self):
        self.collector.cleanup()


class Pipeline:
    """Ordered stage sequence for one test suite, built from the run configuration"""

    name = ""

    def __init__(
        self,
        config: PipelineConfig,
        discovery: Optional[PackageDiscovery] = None,
        executor: Optional[PackageTestExecutor] = None,
        func_summary: Optional[FuncSummaryProvider] = None,
    ):
        self.config = config
        self.discovery = discovery or PackageDiscovery(
            project_root=config.source_path(), lister=go_list
        )
        self._executor = executor
        self._func_summary = func_summary
        self._packages = None  # type: Optional[List[Package]]
        self._daemon = None
        self._cleanups = []  # type: List[Callable]

    @staticmethod
    def create(config: PipelineConfig, **kwargs) -> "Pipeline":
        """Raises UnsupportedSuiteError before anything is run or created"""
        if (
            config.suite_name not in PIPELINES
            or config.suite_name not in Settings.SUPPORTED_SUITES
        ):
            raise UnsupportedSuiteError(config.suite_name, supported=PIPELINES)
        return PIPELINES[config.suite_name](config, **kwargs)

    def cleanups(self) -> List[Callable]:
        return self._cleanups

    def discover(self) -> Result:
        sw = Utils.Stopwatch()
        self._packages = self.discovery.discover(
            self.config.package_pattern, self.config.ignore_set
        )
        return Result.create_from(
            name="discover packages",
            exit_code=0,
            stopwatch=sw,
            info="\n".join(p.import_path for p in self._packages),
        )

    def packages(self) -> List[Package]:
        if self._packages is None:
            raise DiscoveryError("Packages were not discovered yet")
        return self._packages

    def stages(self) -> List[Stage]:
        raise NotImplementedError

    def close(self):
        if self._daemon is not None:
            logging.info("Stop background daemon, pid [%s]", self._daemon.pid)
            Shell.terminate(self._daemon)
            self._daemon = None


class UnitPipeline(Pipeline):
    name = "unit"

    def _project_root(self):
        return self.discovery.project_root

    def _check_format(self, tool) -> Result:
        root = self._project_root()
        files = Utils.find_files(root, ".go", exclude_dirs=(Settings.VENDOR_DIR,))
        if not files:
            return Result.create_from(name=tool, exit_code=0, info="No go files")
        return ShellCommand(
            f"{tool} -l -d {' '.join(files)}", cwd=root, must_be_silent=True
        ).invoke()

    def _lint(self) -> Result:
        ignore = self.config.ignore_set

        def is_reported(line):
            return Settings.VENDOR_DIR not in line and not any(
                name in line for name in ignore
            )

        return ShellCommand(
            f"golint {self.config.package_pattern}",
            cwd=self._project_root(),
            must_be_silent=True,
            output_filter=is_reported,
        ).invoke()

    def _vet(self) -> Result:
        packages = self.discovery.list_packages(self.config.package_pattern)
        return ShellCommand(
            f"go vet {' '.join(p.import_path for p in packages)}",
            cwd=self._project_root(),
        ).invoke()

    def _start_daemon(self) -> Result:
        self._daemon = Shell.run_async(Settings.DOCKER_DAEMON_COMMAND, verbose=True)
        time.sleep(self.config.docker_wait_sec)
        if self._daemon.poll() is not None:
            logging.warning(
                "[%s] exited with code %s, tests that need it may fail",
                Settings.DOCKER_DAEMON_COMMAND,
                self._daemon.returncode,
            )
        return Result.create_from(name=Settings.DOCKER_DAEMON_COMMAND, exit_code=0)

    def _run_coverage(self) -> Result:
        root = self._project_root()
        self._coverage = CoverageStage(
            self.config,
            packages=self.packages,
            executor=self._executor
            or GoTestExecutor(root, tags=self.config.suite_name),
            func_summary=self._func_summary or go_tool_cover_func(root),
            source_dir=root,
        )
        return self._coverage.invoke()

    def _cleanup_coverage(self):
        if self._coverage is not None:
            self._coverage.cleanup()

    def stages(self) -> List[Stage]:
        self._coverage = None  # type: Optional[CoverageStage]
        self._cleanups.append(self._cleanup_coverage)

        stages = [
            Stage("discover packages", CallableStage(self.discover)),
            Stage("gofmt", CallableStage(self._check_format, "gofmt")),
            Stage("goimports", CallableStage(self._check_format, "goimports")),
            Stage("golint", CallableStage(self._lint)),
        ]
        if self.config.run_vet:
            stages.append(Stage("go vet", CallableStage(self._vet)))
        if self.config.start_docker_daemon:
            stages.append(Stage("dockerd", CallableStage(self._start_daemon)))
        stages.append(
            Stage("unit tests with coverage", CallableStage(self._run_coverage))
        )
        return stages


PIPELINES = {
    UnitPipeline.name: UnitPipeline,
}  # type: Dict[str, Type[Pipeline]]
