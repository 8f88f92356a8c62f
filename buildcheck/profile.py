import dataclasses
import logging
import os
import re
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .errors import MergeError
from .utils import Utils

MODE_HEADER_PREFIX = "mode: "


@dataclasses.dataclass(frozen=True)
class CoverageRecord:
    """
    One block of a Go coverage profile:
    <file>:<startLine>.<startCol>,<endLine>.<endCol> <numStatements> <hitCount>
    """

    file: str
    start_line: int
    start_col: int
    end_line: int
    end_col: int
    statements: int
    hits: int

    _PATTERN = re.compile(r"^(.+):(\d+)\.(\d+),(\d+)\.(\d+) (\d+) (\d+)$")

    @classmethod
    def parse(cls, line: str) -> "CoverageRecord":
        match = cls._PATTERN.match(line.strip())
        if not match:
            raise ValueError(f"Not a coverage record [{line.strip()}]")
        file, *numbers = match.groups()
        return cls(file, *(int(n) for n in numbers))

    def to_line(self) -> str:
        return f"{self.file}:{self.start_line}.{self.start_col},{self.end_line}.{self.end_col} {self.statements} {self.hits}"


@dataclasses.dataclass
class MergedCoverageProfile:
    mode: str
    records: List[CoverageRecord]
    path: Optional[Path] = None

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "MergedCoverageProfile":
        path = Path(path)
        with open(path, "r", encoding="utf-8") as f:
            lines = [line for line in f.read().splitlines() if line.strip()]
        mode = parse_mode_header(lines[0] if lines else "")
        if mode is None:
            raise MergeError(f"Coverage profile [{path}] has no mode header")
        try:
            records = [CoverageRecord.parse(line) for line in lines[1:]]
        except ValueError as e:
            raise MergeError(f"Malformed coverage profile [{path}]: {e}") from e
        return cls(mode=mode, records=records, path=path)

    def files(self) -> List[str]:
        """Source files in order of first appearance"""
        return list(dict.fromkeys(r.file for r in self.records))

    def statements(self):
        return sum(r.statements for r in self.records)

    def covered_statements(self):
        return sum(r.statements for r in self.records if r.hits > 0)

    def to_text(self) -> str:
        lines = [f"{MODE_HEADER_PREFIX}{self.mode}"] + [r.to_line() for r in self.records]
        return "\n".join(lines) + "\n"


def parse_mode_header(line: str) -> Optional[str]:
    if not line.startswith(MODE_HEADER_PREFIX):
        return None
    return line[len(MODE_HEADER_PREFIX) :].strip() or None


class CoverageMerger:
    """
    Folds per-package coverage profiles into one profile with a single mode header.

    Inputs are consumed: each one is deleted once its records are in the merged profile.
    The merged profile is written under a temporary name and renamed into place at the end,
    so a failed merge never leaves a partial profile behind.
    """

    def __init__(self, mode: str, output_path: Union[str, Path]):
        self.mode = mode
        self.output_path = Path(output_path)

    @property
    def _tmp_path(self) -> Path:
        return self.output_path.with_name(f".{self.output_path.name}.tmp")

    def _validate(self, artifacts: Sequence[Path]):
        """Checks every input before the first one is consumed"""
        for artifact in artifacts:
            try:
                with open(artifact, "r", encoding="utf-8") as f:
                    mode = parse_mode_header(f.readline())
                    if mode is not None:
                        for line in f:
                            if line.strip():
                                CoverageRecord.parse(line)
            except OSError as e:
                raise MergeError(f"Failed to read coverage artifact [{artifact}]: {e}") from e
            except ValueError as e:
                raise MergeError(
                    f"Malformed record in coverage artifact [{artifact}]: {e}"
                ) from e
            if mode is None:
                raise MergeError(
                    f"Coverage artifact [{artifact}] has no mode header, corrupted or not a coverage profile"
                )
            if mode != self.mode:
                raise MergeError(
                    f"Coverage artifact [{artifact}] has mode [{mode}], expected [{self.mode}]"
                )

    def merge(self, artifacts: Sequence[Union[str, Path]]) -> MergedCoverageProfile:
        artifacts = [Path(a) for a in artifacts]
        self._validate(artifacts)

        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._tmp_path
        records = []
        try:
            with open(tmp_path, "w", encoding="utf-8") as out:
                out.write(f"{MODE_HEADER_PREFIX}{self.mode}\n")
                for artifact in artifacts:
                    with open(artifact, "r", encoding="utf-8") as f:
                        f.readline()  # header, validated above
                        for line in f:
                            if not line.strip():
                                continue
                            line = line.rstrip("\n")
                            records.append(CoverageRecord.parse(line))
                            out.write(line + "\n")
                    Utils.remove_file(artifact)
            os.replace(tmp_path, self.output_path)
        except BaseException:
            Utils.remove_file(tmp_path)
            raise
        logging.info(
            "Merged %s coverage artifacts into [%s], %s records",
            len(artifacts),
            self.output_path,
            len(records),
        )
        return MergedCoverageProfile(
            mode=self.mode, records=records, path=self.output_path
        )
