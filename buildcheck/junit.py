import dataclasses
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Dict, List, Optional, Union

from .errors import EmitError


class TestStatus:
    __test__ = False

    PASS = "PASS"
    FAIL = "FAIL"
    SKIP = "SKIP"


@dataclasses.dataclass
class TestCase:
    __test__ = False

    name: str
    status: Optional[str] = None
    duration: float = 0.0
    output: List[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class TestSuite:
    __test__ = False

    name: str
    cases: List[TestCase] = dataclasses.field(default_factory=list)
    duration: float = 0.0
    coverage: Optional[float] = None
    # "build failed", "setup failed" or "no test files"
    note: str = ""
    failed: bool = False
    output: List[str] = dataclasses.field(default_factory=list)

    @property
    def classname(self):
        return self.name.rsplit("/", 1)[-1]

    def failures(self):
        return sum(1 for c in self.cases if c.status == TestStatus.FAIL)

    def skipped(self):
        return sum(1 for c in self.cases if c.status == TestStatus.SKIP)


class GoTestLogParser:
    """
    Parses `go test -v` output into test suites, one per package result line
    (ok / FAIL / ?) found in the log.
    """

    RE_RUN = re.compile(r"^=== (RUN|CONT|PAUSE|NAME)\s+(\S+)")
    RE_END = re.compile(r"^(\s*)--- (PASS|FAIL|SKIP): (\S+)(?: \((\d+(?:\.\d+)?)s?\))?")
    RE_OK = re.compile(
        r"^ok\s+(\S+)\s+(?:(\d+(?:\.\d+)?)s|\(cached\))(?:\s+coverage: (\d+(?:\.\d+)?)% of statements.*)?"
    )
    RE_FAIL = re.compile(r"^FAIL\s+(\S+)(?:\s+(\d+(?:\.\d+)?)s|\s+\[([^\]]+)\])?\s*$")
    RE_NO_TESTS = re.compile(r"^\?\s+(\S+)\s+\[(no test files)\]")
    RE_COVERAGE = re.compile(r"^coverage: (\d+(?:\.\d+)?)% of statements")
    RE_SUMMARY = re.compile(r"^(PASS|FAIL)$")

    def __init__(self):
        self._reset()
        self.suites = []  # type: List[TestSuite]

    def _reset(self):
        self._cases = {}  # type: Dict[str, TestCase]
        self._current = None  # type: Optional[TestCase]
        self._coverage = None  # type: Optional[float]
        self._output = []  # type: List[str]

    def _case(self, name) -> TestCase:
        if name not in self._cases:
            self._cases[name] = TestCase(name=name)
        return self._cases[name]

    def _finish_suite(self, name, duration=None, coverage=None, note="", failed=False):
        cases = list(self._cases.values())
        for case in cases:
            if case.status is None:
                # started but never reported, e.g. the test binary panicked
                case.status = TestStatus.FAIL
                failed = True
        if failed and not any(c.status == TestStatus.FAIL for c in cases):
            # build failures, TestMain exits, races: no test case to blame
            cases.append(
                TestCase(
                    name=f"[{note or 'package failed'}]",
                    status=TestStatus.FAIL,
                    output=list(self._output),
                )
            )
        self.suites.append(
            TestSuite(
                name=name,
                cases=cases,
                duration=float(duration) if duration else 0.0,
                coverage=float(coverage) if coverage is not None else self._coverage,
                note=note,
                failed=failed or any(c.status == TestStatus.FAIL for c in cases),
                output=list(self._output),
            )
        )
        self._reset()

    def feed(self, line: str):
        line = line.rstrip("\n")
        match = self.RE_RUN.match(line)
        if match:
            self._current = self._case(match.group(2))
            return
        match = self.RE_END.match(line)
        if match:
            case = self._case(match.group(3))
            case.status = match.group(2)
            case.duration = float(match.group(4) or 0)
            self._current = case
            return
        match = self.RE_OK.match(line)
        if match:
            self._finish_suite(match.group(1), match.group(2), match.group(3))
            return
        match = self.RE_FAIL.match(line)
        if match:
            self._finish_suite(
                match.group(1), match.group(2), note=match.group(3) or "", failed=True
            )
            return
        match = self.RE_NO_TESTS.match(line)
        if match:
            self._finish_suite(match.group(1), note=match.group(2))
            return
        match = self.RE_COVERAGE.match(line)
        if match:
            self._coverage = float(match.group(1))
            return
        if self.RE_SUMMARY.match(line):
            self._current = None
            return
        if self._current is not None:
            self._current.output.append(line)
        else:
            self._output.append(line)

    def parse(self, log: str) -> List[TestSuite]:
        if not log or not log.strip():
            raise EmitError("Test log is empty")
        for line in log.splitlines():
            self.feed(line)
        if not self.suites:
            raise EmitError(
                "Test log has no package result line (ok/FAIL/?), not a go test output"
            )
        return self.suites


def _fmt_time(seconds: float) -> str:
    return f"{seconds:.3f}"


def to_junit_xml(suites: List[TestSuite]) -> ET.ElementTree:
    root = ET.Element("testsuites")
    totals = {"tests": 0, "failures": 0, "errors": 0, "skipped": 0}
    total_time = 0.0
    for i, suite in enumerate(suites):
        failures = suite.failures()
        suite_el = ET.SubElement(
            root,
            "testsuite",
            {
                "name": suite.name,
                "id": str(i),
                "tests": str(len(suite.cases)),
                "failures": str(failures),
                "errors": "0",
                "skipped": str(suite.skipped()),
                "time": _fmt_time(suite.duration),
            },
        )
        if suite.coverage is not None:
            props = ET.SubElement(suite_el, "properties")
            ET.SubElement(
                props,
                "property",
                {"name": "coverage.statements.pct", "value": f"{suite.coverage:.2f}"},
            )
        for case in suite.cases:
            case_el = ET.SubElement(
                suite_el,
                "testcase",
                {
                    "classname": suite.classname,
                    "name": case.name,
                    "time": _fmt_time(case.duration),
                },
            )
            if case.status == TestStatus.FAIL:
                failure = ET.SubElement(
                    case_el, "failure", {"message": "Failed", "type": ""}
                )
                failure.text = "\n".join(case.output)
            elif case.status == TestStatus.SKIP:
                ET.SubElement(
                    case_el, "skipped", {"message": "\n".join(case.output)}
                )
        if suite.output:
            ET.SubElement(suite_el, "system-out").text = "\n".join(suite.output)

        totals["tests"] += len(suite.cases)
        totals["failures"] += failures
        totals["skipped"] += suite.skipped()
        total_time += suite.duration
    for key, value in totals.items():
        root.set(key, str(value))
    root.set("time", _fmt_time(total_time))
    return ET.ElementTree(root)


def write_junit_report(log: str, path: Union[str, Path]) -> List[TestSuite]:
    """Parses go test output @log and writes it as a JUnit document into @path"""
    suites = GoTestLogParser().parse(log)
    tree = to_junit_xml(suites)
    ET.indent(tree)
    tree.write(path, encoding="UTF-8", xml_declaration=True)
    return suites
