"""SwarmForge オーケストレーター

依存解析 → 実行計画 → 進捗集約 → 分散実行 のスケジューリングコア。
"""

from .analyzer import (
    CycleDetectionResult,
    DependencyAnalyzer,
    GraphStatistics,
    ValidationResult,
)
from .collaborator import AgentOutcome, WorkerHandle, WorkerPool
from .distributor import DistributionResult, FeatureResult, WorkDistributor
from .planner import ExecutionPlanner
from .progress import (
    FeatureProgress,
    FeatureStatus,
    OverallProgress,
    ProgressAggregator,
    ProgressSnapshot,
    WorkerStatus,
)
from .retry import RetryManager, RetryPolicy

__all__ = [
    # Analyzer
    "DependencyAnalyzer",
    "ValidationResult",
    "CycleDetectionResult",
    "GraphStatistics",
    # Planner
    "ExecutionPlanner",
    # Progress
    "ProgressAggregator",
    "FeatureStatus",
    "FeatureProgress",
    "WorkerStatus",
    "OverallProgress",
    "ProgressSnapshot",
    # Retry
    "RetryManager",
    "RetryPolicy",
    # Collaborator
    "AgentOutcome",
    "WorkerHandle",
    "WorkerPool",
    # Distributor
    "WorkDistributor",
    "DistributionResult",
    "FeatureResult",
]
