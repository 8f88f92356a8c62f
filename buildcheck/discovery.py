import dataclasses
import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from .errors import DiscoveryError
from .settings import Settings
from .utils import Shell

# (root pattern, project root) -> import paths in package index order
PackageLister = Callable[[str, Path], List[str]]


@dataclasses.dataclass(frozen=True)
class Package:
    import_path: str

    @property
    def name(self) -> str:
        return self.import_path.rstrip("/").rsplit("/", 1)[-1]

    def is_vendored(self) -> bool:
        return Settings.VENDOR_DIR in self.import_path.split("/")

    def is_ignored(self, ignore_names: Iterable[str]) -> bool:
        return any(self.name in ignore_name for ignore_name in ignore_names)


def go_list(pattern: str, project_root: Path) -> List[str]:
    exit_code, out, err = Shell.get_res_stdout_stderr(
        f"go list -f={{{{.ImportPath}}}} {pattern}", cwd=project_root, verbose=False
    )
    if exit_code != 0:
        raise DiscoveryError(
            f"go list [{pattern}] failed with exit code {exit_code}: {err or out}"
        )
    return [line.strip() for line in out.splitlines() if line.strip()]


def find_project_root() -> Path:
    exit_code, out, err = Shell.get_res_stdout_stderr(
        "git rev-parse --show-toplevel", verbose=False
    )
    if exit_code != 0 or not out:
        raise DiscoveryError(f"Failed to locate the project root: {err or out}")
    return Path(out)


class PackageDiscovery:
    def __init__(
        self,
        project_root: Optional[Path] = None,
        lister: PackageLister = go_list,
    ):
        self._project_root = project_root
        self.lister = lister

    @property
    def project_root(self) -> Path:
        if self._project_root is None:
            self._project_root = find_project_root()
        if not Path(self._project_root).is_dir():
            raise DiscoveryError(
                f"Project root [{self._project_root}] is not a directory"
            )
        return Path(self._project_root)

    def list_packages(self, root_pattern=Settings.PACKAGE_PATTERN) -> List[Package]:
        """All non-vendored packages matched by @root_pattern, in index order"""
        import_paths = self.lister(root_pattern, self.project_root)
        if not import_paths:
            raise DiscoveryError(f"No packages found for pattern [{root_pattern}]")
        return [
            package
            for package in (Package(p) for p in import_paths)
            if not package.is_vendored()
        ]

    def discover(
        self, root_pattern=Settings.PACKAGE_PATTERN, ignore_names: Iterable[str] = ()
    ) -> List[Package]:
        ignore_names = list(ignore_names)
        packages = []
        seen = {}
        for package in self.list_packages(root_pattern):
            if package.is_ignored(ignore_names):
                logging.warning(
                    "Skip package [%s]: short name [%s] is part of an ignore entry",
                    package.import_path,
                    package.name,
                )
                continue
            if package.name in seen:
                raise DiscoveryError(
                    f"Packages [{seen[package.name]}] and [{package.import_path}] share short name [{package.name}], their reports would overwrite each other"
                )
            seen[package.name] = package.import_path
            packages.append(package)
        logging.info(
            "Discovered %s packages for [%s], ignored names %s",
            len(packages),
            root_pattern,
            ignore_names,
        )
        return packages
