"""SwarmForge Core モジュール

スケジューリングコアの共通基盤を提供:
- Config: 設定管理
- Models: Feature / Worker / 実行計画モデル
- Emitter: 同期オブザーバー
- State: 分散実行フェーズの状態機械
"""

from .config import (
    DistributionConfig,
    PlannerConfig,
    SwarmForgeSettings,
    get_settings,
    reload_settings,
)
from .emitter import EventEmitter
from .errors import (
    CycleError,
    DependencyValidationError,
    DistributionError,
    DistributionInProgressError,
    DuplicateFeatureError,
    ExecutionError,
    GraphConsistencyError,
    MissingAgentTypeError,
    MissingFeatureIdError,
    PersistenceError,
    PlanningError,
    SwarmForgeError,
    UnknownFeatureError,
    WorkerNotFoundError,
)
from .models import (
    Assignment,
    ExecutionPlan,
    Feature,
    PlannedBatch,
    PlanStatistics,
    Priority,
    ResourceEstimate,
    Worker,
    WorkerCapabilities,
    WorkerUtilization,
)
from .state import DistributionPhase, DistributionStateMachine, TransitionError

__all__ = [
    # Config
    "get_settings",
    "reload_settings",
    "SwarmForgeSettings",
    "DistributionConfig",
    "PlannerConfig",
    # Emitter
    "EventEmitter",
    # Errors
    "SwarmForgeError",
    "DependencyValidationError",
    "DuplicateFeatureError",
    "MissingAgentTypeError",
    "MissingFeatureIdError",
    "CycleError",
    "GraphConsistencyError",
    "PlanningError",
    "DistributionError",
    "DistributionInProgressError",
    "UnknownFeatureError",
    "ExecutionError",
    "WorkerNotFoundError",
    "PersistenceError",
    # Models
    "Priority",
    "Feature",
    "Worker",
    "WorkerCapabilities",
    "ResourceEstimate",
    "Assignment",
    "PlannedBatch",
    "WorkerUtilization",
    "ExecutionPlan",
    "PlanStatistics",
    # State
    "DistributionPhase",
    "DistributionStateMachine",
    "TransitionError",
]
