from .collector import CoverageCollector, PackageRun, PackageTestExecutor
from .discovery import Package, PackageDiscovery
from .pipeline import Pipeline
from .profile import CoverageMerger, CoverageRecord, MergedCoverageProfile
from .report import ReportEmitter
from .result import Result
from .runner import CallableStage, Invocable, ShellCommand, Stage, StageRunner
from .settings import PipelineConfig, Settings

__all__ = [
    "CallableStage",
    "CoverageCollector",
    "CoverageMerger",
    "CoverageRecord",
    "Invocable",
    "MergedCoverageProfile",
    "Package",
    "PackageDiscovery",
    "PackageRun",
    "PackageTestExecutor",
    "Pipeline",
    "PipelineConfig",
    "ReportEmitter",
    "Result",
    "Settings",
    "ShellCommand",
    "Stage",
    "StageRunner",
]
