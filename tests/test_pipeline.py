#!/usr/bin/env python3

import io
import tempfile
import unittest
import xml.etree.ElementTree as ET
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock

from buildcheck.__main__ import main
from buildcheck.collector import PackageTestExecutor
from buildcheck.discovery import PackageDiscovery
from buildcheck.errors import MergeError, UnsupportedSuiteError
from buildcheck.pipeline import Pipeline, UnitPipeline
from buildcheck.settings import PipelineConfig
from buildcheck.utils import Shell

_PACKAGES = ["example.com/proj/alpha", "example.com/proj/beta"]

_LOGS = {
    "alpha": """=== RUN   TestAdd
--- PASS: TestAdd (0.00s)
PASS
coverage: 50.0% of statements
ok  \texample.com/proj/alpha\t0.004s\tcoverage: 50.0% of statements
""",
    "beta": """=== RUN   TestMul
    beta_test.go:12: expected 6, got 5
--- FAIL: TestMul (0.00s)
FAIL
coverage: 100.0% of statements
FAIL\texample.com/proj/beta\t0.005s
FAIL
""",
}

_PROFILES = {
    "alpha": [
        "example.com/proj/alpha/alpha.go:3.24,5.2 1 1",
        "example.com/proj/alpha/alpha.go:7.24,9.2 1 0",
    ],
    "beta": ["example.com/proj/beta/beta.go:3.24,5.2 1 3"],
}

_FUNCS = """example.com/proj/alpha/alpha.go:3:\tAdd\t\t100.0%
example.com/proj/alpha/alpha.go:7:\tSub\t\t0.0%
example.com/proj/beta/beta.go:3:\tMul\t\t100.0%
total:\t\t\t\t(statements)\t66.7%
"""


class FakeGoTest(PackageTestExecutor):
    def __init__(self, exit_codes):
        self.exit_codes = exit_codes
        self.calls = []

    def run(self, package, mode, artifact, stream):
        self.calls.append(package.import_path)
        artifact.write_text(
            "\n".join([f"mode: {mode}"] + _PROFILES[package.name]) + "\n",
            encoding="utf-8",
        )
        return self.exit_codes.get(package.name, 0), _LOGS[package.name]


class HeaderlessProfileGoTest(FakeGoTest):
    """Leaves a profile without the mode header for beta"""

    def run(self, package, mode, artifact, stream):
        res = super().run(package, mode, artifact, stream)
        if package.name == "beta":
            artifact.write_text("\n".join(_PROFILES["beta"]) + "\n", encoding="utf-8")
        return res


class TestUnitPipeline(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.build = self.root / "build"

    def tearDown(self):
        self.tmp.cleanup()

    def _main(self, extra_args=(), exit_codes=None, suite="unit", executor=None):
        executor = executor or FakeGoTest(exit_codes or {})
        argv = [
            suite,
            "--source-dir",
            str(self.root),
            "--build-dir",
            str(self.build),
            "--no-docker",
            "--concurrency",
            "2",
            *extra_args,
        ]
        with mock.patch.object(Shell, "run", return_value=(0, "")) as shell_run:
            with redirect_stdout(io.StringIO()), redirect_stderr(io.StringIO()) as err:
                exit_code = main(
                    argv,
                    discovery=PackageDiscovery(
                        project_root=self.root, lister=lambda pattern, root: _PACKAGES
                    ),
                    executor=executor,
                    func_summary=lambda path: _FUNCS,
                )
        return exit_code, executor, shell_run, err.getvalue()

    def test_failing_package(self):
        exit_code, executor, shell_run, _ = self._main(exit_codes={"beta": 3})
        self.assertEqual(3, exit_code)
        self.assertEqual(sorted(_PACKAGES), sorted(executor.calls))

        commands = [c.args[0] for c in shell_run.call_args_list]
        self.assertTrue(any(c.startswith("golint ") for c in commands))
        self.assertFalse(any(c.startswith("go vet") for c in commands))

        reports = self.build / "test-reports"
        self.assertTrue((reports / "alpha-report.xml").is_file())
        beta = ET.parse(reports / "beta-report.xml").getroot()
        self.assertEqual("1", beta.get("failures"))

        coverage = self.build / "coverage-reports"
        profile = (coverage / "profile.cov").read_text(encoding="utf-8").splitlines()
        self.assertEqual(["mode: atomic"] + _PROFILES["alpha"] + _PROFILES["beta"], profile)
        self.assertEqual([], list(coverage.glob("profile_*.cov")))
        root = ET.parse(coverage / "coverage.xml").getroot()
        self.assertEqual("9", root.get("lines-valid"))
        self.assertEqual("6", root.get("lines-covered"))

    def test_all_packages_pass(self):
        exit_code, _, _, _ = self._main()
        self.assertEqual(0, exit_code)
        self.assertTrue((self.build / "coverage-reports" / "coverage.xml").is_file())

    def test_failed_merge_leaves_no_stale_coverage(self):
        coverage = self.build / "coverage-reports"
        coverage.mkdir(parents=True)
        (coverage / "profile.cov").write_text("mode: atomic\n", encoding="utf-8")
        (coverage / "coverage.xml").write_text("<coverage/>", encoding="utf-8")

        exit_code, executor, _, _ = self._main(executor=HeaderlessProfileGoTest({}))
        self.assertEqual(MergeError.exit_code, exit_code)
        self.assertEqual(2, len(executor.calls))
        self.assertEqual([], list(coverage.glob("*")))

    def test_vet_enabled(self):
        exit_code, _, shell_run, _ = self._main(extra_args=["--vet"])
        self.assertEqual(0, exit_code)
        commands = [c.args[0] for c in shell_run.call_args_list]
        self.assertIn("go vet " + " ".join(_PACKAGES), commands)

    def test_ignored_package(self):
        exit_code, executor, _, _ = self._main(
            extra_args=["--ignore", "beta"], exit_codes={"beta": 3}
        )
        self.assertEqual(0, exit_code)
        self.assertEqual(["example.com/proj/alpha"], executor.calls)
        self.assertFalse((self.build / "test-reports" / "beta-report.xml").exists())
        profile = (self.build / "coverage-reports" / "profile.cov").read_text(
            encoding="utf-8"
        )
        self.assertNotIn("beta.go", profile)

    def test_lint_failure_stops_before_tests(self):
        def shell_run(command, **kwargs):
            if command.startswith("golint"):
                return 1, "alpha/alpha.go:3:1: exported function Add should have comment"
            return 0, ""

        executor = FakeGoTest({})
        with mock.patch.object(Shell, "run", side_effect=shell_run):
            with redirect_stdout(io.StringIO()):
                exit_code = main(
                    [
                        "unit",
                        "--source-dir",
                        str(self.root),
                        "--build-dir",
                        str(self.build),
                        "--no-docker",
                    ],
                    discovery=PackageDiscovery(
                        project_root=self.root, lister=lambda pattern, root: _PACKAGES
                    ),
                    executor=executor,
                )
        self.assertEqual(1, exit_code)
        self.assertEqual([], executor.calls)
        self.assertFalse(self.build.exists())

    def test_unsupported_suite(self):
        exit_code, executor, shell_run, stderr = self._main(suite="integration")
        self.assertEqual(1, exit_code)
        self.assertEqual([], executor.calls)
        shell_run.assert_not_called()
        self.assertFalse(self.build.exists())
        self.assertIn("usage:", stderr)
        self.assertIn("integration", stderr)


class TestPipelineStages(unittest.TestCase):
    def test_stage_order(self):
        pipeline = Pipeline.create(PipelineConfig(source_dir="/tmp"))
        self.assertIsInstance(pipeline, UnitPipeline)
        self.assertEqual(
            [
                "discover packages",
                "gofmt",
                "goimports",
                "golint",
                "dockerd",
                "unit tests with coverage",
            ],
            [stage.name for stage in pipeline.stages()],
        )

    def test_vet_is_opt_in(self):
        pipeline = Pipeline.create(
            PipelineConfig(source_dir="/tmp", run_vet=True, start_docker_daemon=False)
        )
        self.assertEqual(
            ["discover packages", "gofmt", "goimports", "golint", "go vet"],
            [stage.name for stage in pipeline.stages()][:5],
        )

    def test_no_docker_stage(self):
        pipeline = Pipeline.create(
            PipelineConfig(source_dir="/tmp", start_docker_daemon=False)
        )
        self.assertNotIn("dockerd", [stage.name for stage in pipeline.stages()])

    def test_unsupported_suite(self):
        with self.assertRaises(UnsupportedSuiteError):
            Pipeline.create(PipelineConfig(suite_name="integration"))


if __name__ == "__main__":
    unittest.main()
