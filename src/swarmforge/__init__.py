"""SwarmForge - 分散作業スケジューリングコア

依存関係を持つ Feature 群から、依存順・リソースを考慮した並列実行計画を作り、
リモートWorkerプールで実行しながら進捗を追跡する。
"""

from .core import (
    CycleError,
    DependencyValidationError,
    DistributionConfig,
    DistributionError,
    Feature,
    PlannerConfig,
    Priority,
    SwarmForgeSettings,
    Worker,
    WorkerCapabilities,
    get_settings,
)
from .orchestrator import (
    DependencyAnalyzer,
    DistributionResult,
    ExecutionPlanner,
    ProgressAggregator,
    WorkDistributor,
)

__version__ = "0.1.0"

__all__ = [
    "Feature",
    "Priority",
    "Worker",
    "WorkerCapabilities",
    "SwarmForgeSettings",
    "DistributionConfig",
    "PlannerConfig",
    "get_settings",
    "DependencyValidationError",
    "CycleError",
    "DistributionError",
    "DependencyAnalyzer",
    "ExecutionPlanner",
    "ProgressAggregator",
    "WorkDistributor",
    "DistributionResult",
]
