import bisect
import dataclasses
import posixpath
import re
import time
import xml.etree.ElementTree as ET
from collections import OrderedDict
from pathlib import Path
from typing import Dict, List, Optional, Union

from .profile import CoverageRecord, MergedCoverageProfile


@dataclasses.dataclass(frozen=True)
class FunctionCoverage:
    file: str
    line: int
    name: str
    percent: float


_FUNC_LINE = re.compile(r"^(.+?):(\d+):\s+(\S+)\s+(\d+(?:\.\d+)?)%\s*$")


def parse_func_summary(text: str) -> List[FunctionCoverage]:
    """
    Parses `go tool cover -func` output, e.g.
        example.com/alpha/alpha.go:3:   Add             100.0%
        total:                          (statements)    100.0%
    """
    res = []
    for line in text.splitlines():
        if line.startswith("total:"):
            continue
        match = _FUNC_LINE.match(line.strip())
        if match:
            file, line_no, name, percent = match.groups()
            res.append(FunctionCoverage(file, int(line_no), name, float(percent)))
    return res


class _Lines:
    def __init__(self):
        self.hits = OrderedDict()  # type: Dict[int, int]

    def add(self, record: CoverageRecord):
        for line in range(record.start_line, record.end_line + 1):
            self.hits[line] = max(self.hits.get(line, 0), record.hits)

    def valid(self):
        return len(self.hits)

    def covered(self):
        return sum(1 for hits in self.hits.values() if hits > 0)

    def rate(self):
        return self.covered() / self.valid() if self.valid() else 0.0

    def to_xml(self, parent):
        lines_el = ET.SubElement(parent, "lines")
        for number in sorted(self.hits):
            ET.SubElement(
                lines_el,
                "line",
                {"number": str(number), "hits": str(self.hits[number])},
            )
        return lines_el


def _rate(value: float) -> str:
    return f"{value:.4f}".rstrip("0").rstrip(".") if value else "0"


class CoberturaReport:
    """
    Builds a Cobertura document out of a merged Go coverage profile.

    Packages are the directories of covered files, classes are files and methods are the
    functions from `go tool cover -func`. A block belongs to the closest function that
    starts at or before the block.
    """

    def __init__(
        self,
        profile: MergedCoverageProfile,
        functions: Optional[List[FunctionCoverage]] = None,
        source_dir: Union[str, Path] = "",
    ):
        self.profile = profile
        self.source_dir = str(source_dir)
        self.functions = {}  # type: Dict[str, List[FunctionCoverage]]
        for function in functions or []:
            self.functions.setdefault(function.file, []).append(function)
        for file_functions in self.functions.values():
            file_functions.sort(key=lambda f: f.line)

    def _records_by_file(self) -> Dict[str, List[CoverageRecord]]:
        res = OrderedDict()  # type: Dict[str, List[CoverageRecord]]
        for record in self.profile.records:
            res.setdefault(record.file, []).append(record)
        return res

    def _class_xml(self, parent, file: str, records: List[CoverageRecord]) -> _Lines:
        file_lines = _Lines()
        functions = self.functions.get(file, [])
        starts = [f.line for f in functions]
        method_lines = [_Lines() for _ in functions]
        for record in records:
            file_lines.add(record)
            idx = bisect.bisect_right(starts, record.start_line) - 1
            if idx >= 0:
                method_lines[idx].add(record)

        class_el = ET.SubElement(
            parent,
            "class",
            {
                "name": posixpath.basename(file),
                "filename": file,
                "line-rate": _rate(file_lines.rate()),
                "branch-rate": "0",
                "complexity": "0",
            },
        )
        methods_el = ET.SubElement(class_el, "methods")
        for function, lines in zip(functions, method_lines):
            method_el = ET.SubElement(
                methods_el,
                "method",
                {
                    "name": function.name,
                    "signature": "",
                    "line-rate": _rate(lines.rate()),
                    "branch-rate": "0",
                    "complexity": "0",
                },
            )
            lines.to_xml(method_el)
        file_lines.to_xml(class_el)
        return file_lines

    def build(self) -> ET.ElementTree:
        root = ET.Element("coverage")
        sources = ET.SubElement(root, "sources")
        ET.SubElement(sources, "source").text = self.source_dir
        packages_el = ET.SubElement(root, "packages")

        by_package = OrderedDict()  # type: Dict[str, Dict[str, List[CoverageRecord]]]
        for file, records in self._records_by_file().items():
            by_package.setdefault(posixpath.dirname(file), OrderedDict())[file] = records

        total_valid, total_covered = 0, 0
        for package_name, files in by_package.items():
            package_el = ET.SubElement(
                packages_el,
                "package",
                {"name": package_name, "branch-rate": "0", "complexity": "0"},
            )
            classes_el = ET.SubElement(package_el, "classes")
            valid, covered = 0, 0
            for file, records in files.items():
                lines = self._class_xml(classes_el, file, records)
                valid += lines.valid()
                covered += lines.covered()
            package_el.set("line-rate", _rate(covered / valid if valid else 0.0))
            total_valid += valid
            total_covered += covered

        for key, value in (
            ("line-rate", _rate(total_covered / total_valid if total_valid else 0.0)),
            ("branch-rate", "0"),
            ("lines-covered", str(total_covered)),
            ("lines-valid", str(total_valid)),
            ("branches-covered", "0"),
            ("branches-valid", "0"),
            ("complexity", "0"),
            ("version", ""),
            ("timestamp", str(int(time.time() * 1000))),
        ):
            root.set(key, value)
        return ET.ElementTree(root)

    def write(self, path: Union[str, Path]) -> Path:
        tree = self.build()
        ET.indent(tree)
        tree.write(path, encoding="UTF-8", xml_declaration=True)
        return Path(path)
