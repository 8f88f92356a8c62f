import dataclasses
import json
import multiprocessing
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConfigurationError
from .utils import MetaClasses


@dataclasses.dataclass
class _Settings:
    ######################################
    #       Pipeline settings            #
    ######################################
    SUPPORTED_SUITES = ["unit"]
    DEFAULT_SUITE = "unit"
    PACKAGE_PATTERN: str = "./..."
    VENDOR_DIR: str = "vendor"
    # a package is skipped when its short name is a substring of an entry,
    # "metricsSchema" also skips packages named "metrics" or "Schema"
    IGNORE_PACKAGES = ["metricsSchema"]

    ######################################
    #       Coverage settings            #
    ######################################
    COVER_MODES = ["count", "atomic", "set"]
    COVER_MODE: str = "atomic"
    MAX_CONCURRENCY: int = multiprocessing.cpu_count()

    ######################################
    #       Build directory layout       #
    ######################################
    BUILD_DIR: str = "./build"
    TEST_REPORTS_DIR_NAME: str = "test-reports"
    COVERAGE_REPORTS_DIR_NAME: str = "coverage-reports"
    MERGED_PROFILE_NAME: str = "profile.cov"
    COVERAGE_REPORT_NAME: str = "coverage.xml"
    PACKAGE_PROFILE_PREFIX: str = "profile_"
    TEST_REPORT_SUFFIX: str = "-report.xml"

    ######################################
    #       Environment preconditions    #
    ######################################
    DOCKER_DAEMON_COMMAND: str = "dockerd"
    DOCKER_DAEMON_WAIT_SEC: int = 5

    ######################################
    #       Exit codes                   #
    ######################################
    EXIT_SUCCESS = 0
    EXIT_CONFIGURATION_ERROR = 1
    EXIT_CANCELLED = 130


Settings = _Settings()


@dataclasses.dataclass
class PipelineConfig(MetaClasses.Serializable):
    """
    Run configuration. Built once by the CLI and handed to every component,
    components never look at the environment or the current directory on their own.
    """

    suite_name: str = Settings.DEFAULT_SUITE
    ignore_packages: List[str] = dataclasses.field(
        default_factory=lambda: list(Settings.IGNORE_PACKAGES)
    )
    cover_mode: str = Settings.COVER_MODE
    concurrency: int = Settings.MAX_CONCURRENCY
    build_dir: str = Settings.BUILD_DIR
    # project root, resolved with git when empty
    source_dir: str = ""
    package_pattern: str = Settings.PACKAGE_PATTERN
    continue_on_emit_error: bool = False
    start_docker_daemon: bool = True
    # adds a go vet stage after golint
    run_vet: bool = False
    docker_wait_sec: int = Settings.DOCKER_DAEMON_WAIT_SEC

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "PipelineConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(obj) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration options {unknown}")
        return cls(**obj)

    @classmethod
    def from_file(cls, path) -> "PipelineConfig":
        try:
            with open(path, "r", encoding="utf8") as f:
                return cls.from_dict(json.load(f))
        except (OSError, json.decoder.JSONDecodeError) as ex:
            raise ConfigurationError(
                f"Failed to read configuration [{path}]: {ex}"
            ) from ex

    def updated(self, **overrides) -> "PipelineConfig":
        """Returns a copy with every override that is not None applied"""
        return dataclasses.replace(
            self, **{k: v for k, v in overrides.items() if v is not None}
        )

    def validate(self) -> "PipelineConfig":
        if self.cover_mode not in Settings.COVER_MODES:
            raise ConfigurationError(
                f"Unsupported coverage mode [{self.cover_mode}], expected one of {Settings.COVER_MODES}"
            )
        if not isinstance(self.concurrency, int) or self.concurrency < 1:
            raise ConfigurationError(
                f"Concurrency must be a positive integer, got [{self.concurrency}]"
            )
        return self

    @property
    def ignore_set(self) -> frozenset:
        return frozenset(self.ignore_packages)

    @property
    def build_path(self) -> Path:
        return Path(self.build_dir).absolute()

    @property
    def test_reports_dir(self) -> Path:
        return self.build_path / Settings.TEST_REPORTS_DIR_NAME

    @property
    def coverage_reports_dir(self) -> Path:
        return self.build_path / Settings.COVERAGE_REPORTS_DIR_NAME

    @property
    def merged_profile_path(self) -> Path:
        return self.coverage_reports_dir / Settings.MERGED_PROFILE_NAME

    @property
    def coverage_report_path(self) -> Path:
        return self.coverage_reports_dir / Settings.COVERAGE_REPORT_NAME

    def source_path(self) -> Optional[Path]:
        return Path(self.source_dir).absolute() if self.source_dir else None
