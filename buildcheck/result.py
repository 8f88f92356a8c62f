import dataclasses
from pathlib import Path
from typing import List, Optional, Union

from .utils import MetaClasses, Utils


@dataclasses.dataclass
class Result(MetaClasses.Serializable):
    """
    Outcome of a pipeline stage, a package test run or the whole pipeline.

    Results nest: a coverage stage Result holds one sub-result per package.

    Attributes:
        name (str): The name of the stage or package.
        status (str): One of the values defined in the Status class.
        exit_code (int): Exit code of the underlying command, 0 on success.
        start_time (Optional[float]): Unix timestamp, None if not started.
        duration (Optional[float]): Seconds, None if not completed.
        results (List[Result]): Nested sub-results.
        files (List[str]): Files produced by the task (reports, profiles).
        info (str): Captured output or any free-form text.
    """

    class Status:
        SKIPPED = "skipped"
        SUCCESS = "success"
        FAILED = "failure"
        ERROR = "error"
        CANCELLED = "cancelled"

    name: str
    status: str
    exit_code: int = 0
    start_time: Optional[float] = None
    duration: Optional[float] = None
    results: List["Result"] = dataclasses.field(default_factory=list)
    files: List[Union[str, Path]] = dataclasses.field(default_factory=list)
    info: str = ""

    @staticmethod
    def create_from(
        name,
        results: Optional[List["Result"]] = None,
        stopwatch: Optional[Utils.Stopwatch] = None,
        exit_code: Optional[int] = None,
        status="",
        files=None,
        info: Union[List[str], str] = "",
    ) -> "Result":
        """
        Builds a Result from an exit code, an explicit status or sub-results.

        With neither an exit code nor a status the status is derived from @results:
        the first failed sub-result defines the exit code.
        """
        if isinstance(status, bool):
            status = Result.Status.SUCCESS if status else Result.Status.FAILED
        if exit_code is not None and not status:
            status = Result.Status.SUCCESS if exit_code == 0 else Result.Status.FAILED
        if not status:
            status = Result.Status.SUCCESS
            for result in results or []:
                if result.is_ok():
                    continue
                if status == Result.Status.SUCCESS:
                    exit_code = result.exit_code or 1
                status = Result.Status.FAILED
        if exit_code is None:
            exit_code = 0 if status in (Result.Status.SUCCESS, Result.Status.SKIPPED) else 1

        if isinstance(info, list):
            info = "\n".join(info)
        return Result(
            name=name,
            status=status,
            exit_code=exit_code,
            start_time=stopwatch.start_time if stopwatch else None,
            duration=stopwatch.duration if stopwatch else None,
            results=results or [],
            files=files or [],
            info=info or "",
        )

    def is_ok(self):
        return self.status in (Result.Status.SUCCESS, Result.Status.SKIPPED)

    def is_error(self):
        return self.status == Result.Status.ERROR

    def is_cancelled(self):
        return self.status == Result.Status.CANCELLED

    def set_status(self, status, exit_code=None) -> "Result":
        self.status = status
        if exit_code is not None:
            self.exit_code = exit_code
        return self

    def set_info(self, info: str) -> "Result":
        if self.info:
            self.info += "\n"
        self.info += info
        return self

    def set_timing(self, stopwatch: Utils.Stopwatch) -> "Result":
        self.start_time = stopwatch.start_time
        self.duration = stopwatch.duration
        return self

    def to_stdout_formatted(self, indent="", res="", full_info=False):
        """
        Renders the result tree, expanding only sub-results that are not ok.
        Info is cut to its head and tail unless @full_info is set.
        """
        add_frame = not res
        sub_indent = indent + "  "

        if add_frame:
            res = "+" * 80 + "\n"
        if add_frame or not self.is_ok():
            exit_code = f", exit code {self.exit_code}" if self.exit_code else ""
            res += f"{indent}{self.status} [{self.name}]{exit_code}\n"
            info_lines = self.info.splitlines()
            if len(info_lines) > 30 and not full_info:
                info_lines = (
                    info_lines[:10]
                    + [f"~~~~~ truncated {len(info_lines) - 20} lines ~~~~~"]
                    + info_lines[-10:]
                )
            for line in info_lines:
                res += f"{sub_indent}| {line}\n"

        if not self.is_ok():
            for sub_result in self.results:
                res = sub_result.to_stdout_formatted(sub_indent, res, full_info)

        if add_frame:
            res += "+" * 80 + "\n"
        return res
