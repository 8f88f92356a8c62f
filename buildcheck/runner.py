import dataclasses
import logging
import signal
import traceback
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence

from .errors import BuildCheckError, PipelineCancelled
from .result import Result
from .settings import Settings
from .utils import Shell, Utils


class Invocable(ABC):
    @abstractmethod
    def invoke(self) -> Result:
        pass


class ShellCommand(Invocable):
    """
    Runs a shell command, streaming its output live and keeping a copy as Result.info.

    With @must_be_silent the command fails when it prints anything, for tools like gofmt -l
    that report problems on stdout and exit with 0.
    """

    def __init__(self, command, cwd=None, must_be_silent=False, output_filter=None):
        self.command = command
        self.cwd = cwd
        self.must_be_silent = must_be_silent
        self.output_filter = output_filter

    def invoke(self) -> Result:
        sw = Utils.Stopwatch()
        command = self.command() if callable(self.command) else self.command
        exit_code, output = Shell.run(command, cwd=self.cwd, verbose=True)
        if self.output_filter:
            output = "".join(
                line for line in output.splitlines(keepends=True) if self.output_filter(line)
            )
        if exit_code == 0 and self.must_be_silent and output.strip():
            exit_code = 1
        return Result.create_from(
            name=command, exit_code=exit_code, stopwatch=sw, info=output.rstrip("\n")
        )


class CallableStage(Invocable):
    """
    Wraps a python callable. The callable may return a Result, an int exit code or a bool.
    """

    def __init__(self, func: Callable, *args, **kwargs):
        self.func = func
        self.args = args
        self.kwargs = kwargs

    def invoke(self) -> Result:
        sw = Utils.Stopwatch()
        res = self.func(*self.args, **self.kwargs)
        if isinstance(res, Result):
            return res
        if isinstance(res, bool):
            return Result.create_from(name=str(self.func), status=res, stopwatch=sw)
        return Result.create_from(name=str(self.func), exit_code=int(res or 0), stopwatch=sw)


@dataclasses.dataclass
class Stage:
    name: str
    invocable: Invocable


class StageRunner:
    """
    Runs stages strictly in order and stops at the first one that fails.

    The overall exit code is the failing stage's exit code, 0 if all stages pass and
    Settings.EXIT_CANCELLED if the run was interrupted.
    """

    def __init__(self, cleanups: Optional[List[Callable]] = None):
        self.cleanups = cleanups if cleanups is not None else []
        self.results = []  # type: List[Result]

    def _run_stage(self, stage: Stage) -> Result:
        Utils.logmsg(f"Running '{stage.name}' ...")
        sw = Utils.Stopwatch()
        try:
            result = stage.invocable.invoke()
        except PipelineCancelled:
            raise
        except BuildCheckError as e:
            logging.error("Stage [%s] failed: %s", stage.name, e)
            return Result.create_from(
                name=stage.name, exit_code=e.exit_code, stopwatch=sw, info=str(e)
            ).set_status(Result.Status.ERROR)
        result.name = stage.name
        if result.start_time is None:
            result.set_timing(sw)
        return result

    def _cleanup(self):
        terminated = Shell.terminate_all()
        if terminated:
            logging.warning("Terminated %s in-flight processes", terminated)
        for func in self.cleanups:
            try:
                func()
            except Exception:
                logging.error("Cleanup [%s] failed:\n%s", func, traceback.format_exc())

    def run(self, stages: Sequence[Stage]) -> int:
        self.results = []
        handler_installed = False
        previous_handler = None
        try:
            previous_handler = signal.signal(signal.SIGTERM, _raise_cancelled)
            handler_installed = True
        except ValueError:
            # not the main thread, SIGTERM stays with the caller
            pass
        try:
            for stage in stages:
                result = self._run_stage(stage)
                self.results.append(result)
                if not result.is_ok():
                    print(result.to_stdout_formatted(full_info=True), flush=True)
                    logging.error(
                        "Stage [%s] failed with exit code %s, %s remaining stages are not run",
                        stage.name,
                        result.exit_code,
                        len(stages) - len(self.results),
                    )
                    return result.exit_code or 1
                logging.info("Stage [%s] passed", stage.name)
            return Settings.EXIT_SUCCESS
        except (KeyboardInterrupt, PipelineCancelled):
            logging.error("Pipeline cancelled, cleaning up")
            self._cleanup()
            self.results.append(
                Result(
                    name="cancelled",
                    status=Result.Status.CANCELLED,
                    exit_code=Settings.EXIT_CANCELLED,
                )
            )
            return Settings.EXIT_CANCELLED
        finally:
            if handler_installed:
                signal.signal(signal.SIGTERM, previous_handler or signal.SIG_DFL)


def _raise_cancelled(signum, _frame):
    raise PipelineCancelled(f"Received signal {signum}")
