import dataclasses
import json
import logging
import os
import signal
import subprocess
import sys
import threading
import time
from pathlib import Path
from types import SimpleNamespace
from typing import Any, Dict, List, Tuple, Type, TypeVar, Union

T = TypeVar("T", bound="MetaClasses.Serializable")


class MetaClasses:
    @dataclasses.dataclass
    class Serializable:
        @classmethod
        def to_dict(cls, obj):
            if dataclasses.is_dataclass(obj):
                return {k: cls.to_dict(v) for k, v in dataclasses.asdict(obj).items()}
            elif isinstance(obj, SimpleNamespace):
                return {k: cls.to_dict(v) for k, v in vars(obj).items()}
            elif isinstance(obj, list):
                return [cls.to_dict(i) for i in obj]
            elif isinstance(obj, dict):
                return {k: cls.to_dict(v) for k, v in obj.items()}
            else:
                return obj

        @classmethod
        def from_dict(cls: Type[T], obj: Dict[str, Any]) -> T:
            return cls(**obj)

        def to_json(self, pretty=False):
            return json.dumps(self.to_dict(self), indent=4 if pretty else None)


class Shell:
    """
    Runs shell commands in their own process group.

    Every started process is registered until it exits so that a cancelled run
    can terminate all of them at once (see Shell.terminate_all).
    """

    _lock = threading.Lock()
    _processes = set()  # type: set

    @classmethod
    def _register(cls, proc):
        with cls._lock:
            cls._processes.add(proc)

    @classmethod
    def _unregister(cls, proc):
        with cls._lock:
            cls._processes.discard(proc)

    @classmethod
    def get_res_stdout_stderr(cls, command, cwd=None, verbose=True):
        if verbose:
            print(f"Run command [{command}]")
        res = subprocess.run(
            command,
            shell=True,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        return res.returncode, res.stdout.strip(), res.stderr.strip()

    @classmethod
    def run(
        cls,
        command,
        cwd=None,
        stream=True,
        verbose=False,
    ) -> Tuple[int, str]:
        """
        Runs @command with stderr merged into stdout.

        Each output line is written to sys.stdout as soon as it arrives when @stream is set,
        and is always collected into the returned output.
        :return: (exit code, captured output)
        """
        if verbose:
            print(f"Run command: [{command}]")

        lines = []  # type: List[str]
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=cwd,
            stderr=subprocess.STDOUT,
            stdout=subprocess.PIPE,
            universal_newlines=True,
            start_new_session=True,  # signals go to the whole process group
            bufsize=1,  # Line-buffered
            errors="backslashreplace",
        )
        cls._register(proc)
        try:
            if proc.stdout:
                for line in proc.stdout:
                    lines.append(line)
                    if stream:
                        sys.stdout.write(line)
                        sys.stdout.flush()
            proc.wait()
        except BaseException:
            # the child runs in its own session and never sees our SIGINT
            cls.terminate(proc)
            raise
        finally:
            cls._unregister(proc)
        return proc.returncode, "".join(lines)

    @classmethod
    def run_async(cls, command, cwd=None, verbose=False):
        """Starts @command in background with its output discarded"""
        if verbose:
            print(f"Run command in background [{command}]")
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=cwd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        cls._register(proc)
        return proc

    @classmethod
    def terminate(cls, proc, grace_period=10):
        if proc.poll() is not None:
            cls._unregister(proc)
            return
        try:
            Utils.terminate_process_group(proc.pid)
        except ProcessLookupError:
            pass
        time_wait = 0.0
        while proc.poll() is None and time_wait < grace_period:
            time.sleep(0.1)
            time_wait += 0.1
        if proc.poll() is None:
            logging.warning(
                "Process [%s] still running after SIGTERM, sending SIGKILL", proc.pid
            )
            try:
                Utils.terminate_process_group(proc.pid, force=True)
            except ProcessLookupError:
                pass
        cls._unregister(proc)

    @classmethod
    def terminate_all(cls):
        with cls._lock:
            procs = list(cls._processes)
        for proc in procs:
            cls.terminate(proc)
        return len(procs)


class Utils:
    @staticmethod
    def terminate_process_group(pid, force=False):
        os.killpg(os.getpgid(pid), signal.SIGKILL if force else signal.SIGTERM)

    @staticmethod
    def print_formatted_error(error_message, details=""):
        print(f"ERROR: {error_message}", file=sys.stderr)
        for line in details.splitlines():
            print(f"     | {line}", file=sys.stderr)

    @staticmethod
    def logmsg(message):
        print(f"\n\n*** {message} ***\n", flush=True)

    @staticmethod
    def mangle(import_path: str) -> str:
        """Turns an import path into a string usable as a single file name"""
        res = import_path
        for r in (("/", "_"), (".", "_"), ("-", "_"), ("~", "_"), (":", "")):
            res = res.replace(*r)
        return res

    @staticmethod
    def find_files(
        root: Union[str, Path], suffix: str, exclude_dirs=()
    ) -> List[str]:
        """
        Walks @root and returns paths (relative to @root, sorted) of files ending with @suffix.
        Directories named in @exclude_dirs are not descended into at the top level of @root.
        """
        root = Path(root)
        res = []
        for dirpath, dirnames, filenames in os.walk(root):
            if Path(dirpath) == root:
                dirnames[:] = [d for d in dirnames if d not in exclude_dirs]
            for file in filenames:
                if file.endswith(suffix):
                    res.append(
                        str(Path(dirpath, file).relative_to(root)).replace(os.sep, "/")
                    )
        res.sort()
        return res

    @staticmethod
    def remove_file(path, missing_ok=True):
        try:
            Path(path).unlink()
        except FileNotFoundError:
            if not missing_ok:
                raise

    class Stopwatch:
        def __init__(self):
            self.start_time = time.time()

        @property
        def duration(self) -> float:
            return time.time() - self.start_time
