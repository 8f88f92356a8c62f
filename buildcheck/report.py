import dataclasses
import logging
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .cobertura import CoberturaReport, FunctionCoverage, parse_func_summary
from .collector import PackageRun
from .errors import EmitError
from .junit import write_junit_report
from .profile import MergedCoverageProfile
from .settings import Settings
from .utils import Shell

# profile path -> `go tool cover -func` output
FuncSummaryProvider = Callable[[Path], str]


def go_tool_cover_func(project_root) -> FuncSummaryProvider:
    def provider(profile_path: Path) -> str:
        exit_code, output = Shell.run(
            f"go tool cover -func {profile_path}", cwd=project_root, verbose=True
        )
        if exit_code != 0:
            raise EmitError(
                f"go tool cover -func failed with exit code {exit_code}: {output.strip()}"
            )
        return output

    return provider


@dataclasses.dataclass
class EmitOutput:
    coverage_report_path: Optional[Path]
    test_report_paths: List[Path] = dataclasses.field(default_factory=list)
    # messages of EmitErrors skipped with continue_on_errors
    errors: List[str] = dataclasses.field(default_factory=list)


class ReportEmitter:
    """
    Writes test-reports/<package>-report.xml (JUnit) for every package run and
    coverage-reports/coverage.xml (Cobertura) for the merged profile.

    Output directories are created when missing, other files in them are left alone.
    """

    def __init__(
        self,
        test_reports_dir,
        coverage_report_path,
        func_summary: Optional[FuncSummaryProvider] = None,
        source_dir="",
        continue_on_errors=False,
    ):
        self.test_reports_dir = Path(test_reports_dir)
        self.coverage_report_path = Path(coverage_report_path)
        self.func_summary = func_summary
        self.source_dir = source_dir
        self.continue_on_errors = continue_on_errors

    def test_report_path(self, run: PackageRun) -> Path:
        return self.test_reports_dir / f"{run.package.name}{Settings.TEST_REPORT_SUFFIX}"

    def _functions(self, profile: MergedCoverageProfile) -> List[FunctionCoverage]:
        if not self.func_summary or profile.path is None:
            return []
        try:
            return parse_func_summary(self.func_summary(profile.path))
        except EmitError as e:
            logging.warning("No per-function coverage, methods are omitted: %s", e)
            return []

    def emit_coverage(self, profile: MergedCoverageProfile) -> Path:
        self.coverage_report_path.parent.mkdir(parents=True, exist_ok=True)
        report = CoberturaReport(
            profile, functions=self._functions(profile), source_dir=self.source_dir
        )
        report.write(self.coverage_report_path)
        logging.info(
            "Coverage report [%s]: %s/%s statements covered",
            self.coverage_report_path,
            profile.covered_statements(),
            profile.statements(),
        )
        return self.coverage_report_path

    def emit_test_report(self, run: PackageRun) -> Path:
        path = self.test_report_path(run)
        try:
            write_junit_report(run.output, path)
        except EmitError as e:
            raise EmitError(f"[{run.package.import_path}]: {e}") from e
        return path

    def emit(
        self, profile: Optional[MergedCoverageProfile], package_runs: Sequence[PackageRun]
    ) -> EmitOutput:
        self.test_reports_dir.mkdir(parents=True, exist_ok=True)
        res = EmitOutput(coverage_report_path=None)
        for run in package_runs:
            try:
                res.test_report_paths.append(self.emit_test_report(run))
            except EmitError as e:
                if not self.continue_on_errors:
                    raise
                logging.error("Skip test report: %s", e)
                res.errors.append(str(e))
        if profile is not None:
            res.coverage_report_path = self.emit_coverage(profile)
        return res
