#!/usr/bin/env python3

import tempfile
import unittest
import xml.etree.ElementTree as ET
from pathlib import Path

from buildcheck.errors import EmitError
from buildcheck.junit import GoTestLogParser, TestStatus, write_junit_report

ALPHA_LOG = """=== RUN   TestAdd
--- PASS: TestAdd (0.00s)
=== RUN   TestSub
=== RUN   TestSub/negative
--- PASS: TestSub (0.01s)
    --- PASS: TestSub/negative (0.00s)
PASS
coverage: 75.0% of statements
ok  \texample.com/proj/alpha\t0.004s\tcoverage: 75.0% of statements
"""

BETA_LOG = """=== RUN   TestMul
    beta_test.go:12: expected 6, got 5
--- FAIL: TestMul (0.00s)
=== RUN   TestSkipped
    beta_test.go:20: not on this platform
--- SKIP: TestSkipped (0.00s)
FAIL
coverage: 50.0% of statements
FAIL\texample.com/proj/beta\t0.005s
FAIL
"""

BUILD_FAILED_LOG = """# example.com/proj/gamma
gamma/gamma.go:5:2: undefined: foo
FAIL\texample.com/proj/gamma [build failed]
FAIL
"""

PANIC_LOG = """=== RUN   TestBoom
panic: boom [recovered]
goroutine 7 [running]:
FAIL\texample.com/proj/delta\t0.003s
"""

NO_TESTS_LOG = "?   \texample.com/proj/cmd\t[no test files]\n"

CACHED_LOG = "ok  \texample.com/proj/alpha\t(cached)\tcoverage: 75.0% of statements\n"


class TestGoTestLogParser(unittest.TestCase):
    def test_passing_package(self):
        (suite,) = GoTestLogParser().parse(ALPHA_LOG)
        self.assertEqual("example.com/proj/alpha", suite.name)
        self.assertEqual("alpha", suite.classname)
        self.assertEqual(
            ["TestAdd", "TestSub", "TestSub/negative"], [c.name for c in suite.cases]
        )
        self.assertTrue(all(c.status == TestStatus.PASS for c in suite.cases))
        self.assertFalse(suite.failed)
        self.assertEqual(75.0, suite.coverage)
        self.assertAlmostEqual(0.004, suite.duration)
        self.assertAlmostEqual(0.01, suite.cases[1].duration)

    def test_failing_package(self):
        (suite,) = GoTestLogParser().parse(BETA_LOG)
        self.assertTrue(suite.failed)
        self.assertEqual(1, suite.failures())
        self.assertEqual(1, suite.skipped())
        mul = suite.cases[0]
        self.assertEqual(TestStatus.FAIL, mul.status)
        self.assertIn("    beta_test.go:12: expected 6, got 5", mul.output)
        self.assertIn("    beta_test.go:20: not on this platform", suite.cases[1].output)
        self.assertEqual(50.0, suite.coverage)

    def test_build_failure(self):
        (suite,) = GoTestLogParser().parse(BUILD_FAILED_LOG)
        self.assertTrue(suite.failed)
        self.assertEqual("build failed", suite.note)
        self.assertEqual(["[build failed]"], [c.name for c in suite.cases])
        self.assertIn("gamma/gamma.go:5:2: undefined: foo", suite.cases[0].output)

    def test_unfinished_test_is_failed(self):
        (suite,) = GoTestLogParser().parse(PANIC_LOG)
        self.assertEqual(["TestBoom"], [c.name for c in suite.cases])
        self.assertEqual(TestStatus.FAIL, suite.cases[0].status)
        self.assertIn("panic: boom [recovered]", suite.cases[0].output)

    def test_no_test_files(self):
        (suite,) = GoTestLogParser().parse(NO_TESTS_LOG)
        self.assertEqual("example.com/proj/cmd", suite.name)
        self.assertEqual([], suite.cases)
        self.assertFalse(suite.failed)

    def test_cached(self):
        (suite,) = GoTestLogParser().parse(CACHED_LOG)
        self.assertEqual(0.0, suite.duration)
        self.assertEqual(75.0, suite.coverage)

    def test_several_packages(self):
        suites = GoTestLogParser().parse(ALPHA_LOG + BETA_LOG)
        self.assertEqual(
            ["example.com/proj/alpha", "example.com/proj/beta"], [s.name for s in suites]
        )
        self.assertEqual(3, len(suites[0].cases))
        self.assertEqual(2, len(suites[1].cases))

    def test_empty_log(self):
        for log in ("", "\n  \n"):
            with self.assertRaises(EmitError):
                GoTestLogParser().parse(log)

    def test_not_a_go_test_log(self):
        with self.assertRaises(EmitError):
            GoTestLogParser().parse("make: *** No rule to make target\n")


class TestJUnitReport(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def _write(self, log):
        path = self.dir / "report.xml"
        write_junit_report(log, path)
        return ET.parse(path).getroot()

    def test_failing_report(self):
        root = self._write(BETA_LOG)
        self.assertEqual("testsuites", root.tag)
        suite = root.find("testsuite")
        self.assertEqual("example.com/proj/beta", suite.get("name"))
        self.assertEqual("2", suite.get("tests"))
        self.assertEqual("1", suite.get("failures"))
        self.assertEqual("1", suite.get("skipped"))
        self.assertEqual("0.005", suite.get("time"))
        cases = suite.findall("testcase")
        self.assertEqual("beta", cases[0].get("classname"))
        failure = cases[0].find("failure")
        self.assertIsNotNone(failure)
        self.assertIn("expected 6, got 5", failure.text)
        self.assertIsNotNone(cases[1].find("skipped"))
        prop = suite.find("properties/property")
        self.assertEqual("coverage.statements.pct", prop.get("name"))
        self.assertEqual("50.00", prop.get("value"))

    def test_passing_report(self):
        root = self._write(ALPHA_LOG)
        self.assertEqual("3", root.get("tests"))
        self.assertEqual("0", root.get("failures"))
        suite = root.find("testsuite")
        for case in suite.findall("testcase"):
            self.assertIsNone(case.find("failure"))

    def test_malformed_log_writes_nothing(self):
        path = self.dir / "report.xml"
        with self.assertRaises(EmitError):
            write_junit_report("", path)
        self.assertFalse(path.exists())


if __name__ == "__main__":
    unittest.main()
