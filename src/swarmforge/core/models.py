"""SwarmForge データモデル

Feature（作業単位）、Worker、割り当て、実行計画のPydanticモデル。
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class Priority(StrEnum):
    """Feature 優先度"""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ─── Feature ────────────────────────────────────────────


class Feature(BaseModel):
    """宣言された作業単位"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(..., min_length=1, description="一意なFeature ID")
    agent_type: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("agent_type", "agent", "agentType"),
        description="必要なWorker能力（backend, frontend 等）",
    )
    priority: Priority = Field(default=Priority.MEDIUM)
    dependencies: list[str] = Field(
        default_factory=list,
        description="依存するFeature IDのリスト",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="description / requirements 等のタスク記述用メタデータ",
    )


# ─── Worker ─────────────────────────────────────────────


class WorkerCapabilities(BaseModel):
    """Worker の能力宣言（未指定は無制約）"""

    memory: int | None = Field(default=None, ge=0, description="利用可能メモリ (MB)")
    cpu: float | None = Field(default=None, ge=0, description="利用可能CPUコア数")
    agents: list[str] | None = Field(default=None, description="対応エージェント種別")


class Worker(BaseModel):
    """リモートWorker"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    capabilities: WorkerCapabilities | None = None


class ResourceEstimate(BaseModel):
    """リソース見積もり"""

    model_config = ConfigDict(frozen=True)

    time: int = Field(..., ge=0, description="推定時間 (ms)")
    memory: int = Field(default=512, ge=0, description="推定メモリ (MB)")
    cpu: float = Field(default=1, ge=0, description="推定CPUコア数")


# ─── 実行計画 ───────────────────────────────────────────


class Assignment(BaseModel):
    """Feature と Worker の割り当て

    生成後は不変。再配分では worker_id を差し替えたコピーを作る。
    """

    model_config = ConfigDict(frozen=True)

    feature_id: str
    worker_id: str
    agent_type: str
    priority: Priority = Priority.MEDIUM
    estimated_time: int = Field(..., ge=0, description="推定時間 (ms)")
    estimated_memory: int = Field(default=0, ge=0)
    estimated_cpu: float = Field(default=0, ge=0)


class PlannedBatch(BaseModel):
    """割り当て済みバッチ"""

    batch_number: int = Field(..., ge=1)
    feature_count: int = Field(..., ge=0)
    assignments: list[Assignment] = Field(default_factory=list)
    estimated_time: int = Field(default=0, description="バッチ内最大推定時間 (ms)")
    start_time: int = Field(default=0, description="計画開始からの累積開始時刻 (ms)")
    end_time: int = Field(default=0, description="計画開始からの累積終了時刻 (ms)")
    unassigned: list[str] = Field(
        default_factory=list,
        description="適格なWorkerがなく割り当てられなかったFeature ID",
    )


class WorkerUtilization(BaseModel):
    """Worker ごとの計画上の利用状況"""

    assigned_features: int = 0
    estimated_time: int = 0
    current_load: int = 0


class PlanMetadata(BaseModel):
    """実行計画のメタ情報"""

    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    batch_count: int = 0
    worker_count: int = 0
    optimized: bool = False


class ExecutionPlan(BaseModel):
    """バッチ順の実行計画"""

    batches: list[PlannedBatch] = Field(default_factory=list)
    total_estimated_time: int = 0
    total_features: int = 0
    worker_utilization: dict[str, WorkerUtilization] = Field(default_factory=dict)
    metadata: PlanMetadata = Field(default_factory=PlanMetadata)

    def iter_assignments(self) -> list[Assignment]:
        """全バッチの割り当てを順に返す"""
        return [a for batch in self.batches for a in batch.assignments]

    @property
    def unassigned_features(self) -> list[str]:
        """割り当てられなかったFeature ID"""
        return [fid for batch in self.batches for fid in batch.unassigned]


class WorkerPlanStats(BaseModel):
    """Worker ごとの計画統計"""

    features: int
    estimated_time: int
    utilization_percent: float


class PlanStatistics(BaseModel):
    """実行計画の統計"""

    total_batches: int
    total_features: int
    total_estimated_time: int
    avg_batch_time: float
    max_batch_time: int
    worker_stats: dict[str, WorkerPlanStats] = Field(default_factory=dict)
