"""実行プランナー - バッチの Worker 割り当て

依存バッチとWorker一覧から、能力・容量を満たすWorkerへ
貪欲スコアリングで Feature を割り当て、バッチ/計画の推定時間を求める。
"""

from __future__ import annotations

import logging
import random
from collections.abc import Sequence

from swarmforge.core.config import PlannerConfig, default_resource_estimates, get_settings
from swarmforge.core.emitter import EventEmitter
from swarmforge.core.errors import PlanningError
from swarmforge.core.models import (
    Assignment,
    ExecutionPlan,
    Feature,
    PlanMetadata,
    PlannedBatch,
    PlanStatistics,
    ResourceEstimate,
    Worker,
    WorkerPlanStats,
    WorkerUtilization,
)

logger = logging.getLogger(__name__)

# 再配分の過負荷・低負荷判定しきい値（平均負荷に対する比率）
OVERLOAD_RATIO = 1.2
UNDERLOAD_RATIO = 0.8


class ExecutionPlanner:
    """バッチ単位の貪欲な割り当てプランナー

    最適（最小メイクスパン）ではなく、ヒューリスティックで割り当てる。
    """

    def __init__(
        self,
        config: PlannerConfig | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """初期化

        Args:
            config: プランナー設定。Noneの場合はグローバル設定を使用。
            rng: スコアのジッター用乱数生成器
        """
        self.config = config or get_settings().planner
        self.events = EventEmitter()
        self._rng = rng or random.Random()
        self._estimates = {**default_resource_estimates(), **self.config.resource_estimates}

    # ─── 見積もり ───────────────────────────────────────

    def estimate_resources(self, feature: Feature) -> ResourceEstimate:
        """Feature のリソース要件を見積もる

        エージェント種別の基本見積もりの時間を優先度倍率で補正する。
        """
        base = self._estimates.get(feature.agent_type, self.config.default_estimate)
        multiplier = self.config.priority_multipliers.get(feature.priority, 1.0)
        return ResourceEstimate(
            time=round(base.time * multiplier),
            memory=base.memory,
            cpu=base.cpu,
        )

    # ─── 計画作成 ───────────────────────────────────────

    def create_execution_plan(
        self,
        batches: Sequence[Sequence[Feature]],
        workers: Sequence[Worker],
    ) -> ExecutionPlan:
        """依存バッチから実行計画を作成する

        Raises:
            PlanningError: バッチまたはWorkerが空の場合
        """
        if not batches:
            raise PlanningError("No batches provided")
        if not workers:
            raise PlanningError("No workers available")

        plan = ExecutionPlan(
            worker_utilization={w.id: WorkerUtilization() for w in workers},
            metadata=PlanMetadata(batch_count=len(batches), worker_count=len(workers)),
        )

        current_time = 0
        for batch_index, batch in enumerate(batches):
            assignments, unassigned = self._assign_batch(batch, workers, plan.worker_utilization)
            # バッチ内は並列実行なので最大時間がバッチ時間
            batch_time = max((a.estimated_time for a in assignments), default=0)

            plan.batches.append(
                PlannedBatch(
                    batch_number=batch_index + 1,
                    feature_count=len(batch),
                    assignments=assignments,
                    estimated_time=batch_time,
                    start_time=current_time,
                    end_time=current_time + batch_time,
                    unassigned=unassigned,
                )
            )
            current_time += batch_time
            plan.total_features += len(batch)

        plan.total_estimated_time = current_time

        logger.info(
            "実行計画を作成: batches=%d features=%d estimated=%dms",
            len(plan.batches),
            plan.total_features,
            plan.total_estimated_time,
        )
        self.events.emit(
            "plan-created",
            {
                "batches": len(plan.batches),
                "features": plan.total_features,
                "estimated_time": plan.total_estimated_time,
            },
        )
        return plan

    def _assign_batch(
        self,
        batch: Sequence[Feature],
        workers: Sequence[Worker],
        utilization: dict[str, WorkerUtilization],
    ) -> tuple[list[Assignment], list[str]]:
        """バッチ内の Feature を Worker に割り当てる

        優先度の高い順（同順位は元の順序を維持）に処理する。
        同時実行数のカウントはバッチごとにリセットする。
        """
        for util in utilization.values():
            util.current_load = 0

        weights = self.config.priority_weights
        ordered = sorted(batch, key=lambda f: weights.get(f.priority, 1), reverse=True)

        assignments: list[Assignment] = []
        unassigned: list[str] = []

        for feature in ordered:
            estimate = self.estimate_resources(feature)
            worker = self._select_worker(feature, estimate, workers, utilization)

            if worker is None:
                logger.warning("適格なWorkerがないため割り当てをスキップ: feature=%s", feature.id)
                self.events.emit(
                    "assignment-warning",
                    {"feature": feature.id, "reason": "No suitable worker found"},
                )
                unassigned.append(feature.id)
                continue

            assignments.append(
                Assignment(
                    feature_id=feature.id,
                    worker_id=worker.id,
                    agent_type=feature.agent_type,
                    priority=feature.priority,
                    estimated_time=estimate.time,
                    estimated_memory=estimate.memory,
                    estimated_cpu=estimate.cpu,
                )
            )

            util = utilization[worker.id]
            util.assigned_features += 1
            util.estimated_time += estimate.time
            util.current_load += 1

        return assignments, unassigned

    def _select_worker(
        self,
        feature: Feature,
        estimate: ResourceEstimate,
        workers: Sequence[Worker],
        utilization: dict[str, WorkerUtilization],
    ) -> Worker | None:
        """スコア最小の適格Workerを選択する"""
        best: Worker | None = None
        best_score = float("inf")

        for worker in workers:
            if not self._is_compatible(worker, feature.agent_type):
                continue
            if not self._has_capacity(worker, estimate):
                continue
            util = utilization[worker.id]
            if util.current_load >= self.config.max_concurrent_per_worker:
                continue

            score = self._score(util)
            if score < best_score:
                best, best_score = worker, score

        return best

    @staticmethod
    def _is_compatible(worker: Worker, agent_type: str) -> bool:
        """エージェント種別の制約を満たすか（制約なしは常に適合）"""
        caps = worker.capabilities
        if caps is None or caps.agents is None:
            return True
        return agent_type in caps.agents

    @staticmethod
    def _has_capacity(worker: Worker, estimate: ResourceEstimate) -> bool:
        """宣言済みのメモリ・CPUが見積もり以上か"""
        caps = worker.capabilities
        if caps is None:
            return True
        if caps.memory is not None and estimate.memory > caps.memory:
            return False
        if caps.cpu is not None and estimate.cpu > caps.cpu:
            return False
        return True

    def _score(self, util: WorkerUtilization) -> float:
        """Workerスコア（小さいほど良い）"""
        score = util.current_load * 100
        score += util.estimated_time / 1000
        # 同点時に同じWorkerへ偏らないようにする
        score += self._rng.random() * self.config.jitter
        return score

    # ─── 最適化・統計 ───────────────────────────────────

    def optimize_plan(self, plan: ExecutionPlan, workers: Sequence[Worker]) -> ExecutionPlan:
        """負荷の偏りを再配分した計画のコピーを返す

        バッチごとに過負荷Workerの割り当てを1件だけ最初の低負荷Workerへ移す。
        移動先の能力・容量は再検証しない。
        """
        optimized = plan.model_copy(deep=True)
        if not workers:
            return optimized

        moved = 0
        for batch in optimized.batches:
            loads: dict[str, int] = {w.id: 0 for w in workers}
            for assignment in batch.assignments:
                loads[assignment.worker_id] = loads.get(assignment.worker_id, 0) + (
                    assignment.estimated_time
                )

            avg_load = sum(loads.values()) / len(workers)
            overloaded = [wid for wid, load in loads.items() if load > avg_load * OVERLOAD_RATIO]
            underloaded = [wid for wid, load in loads.items() if load < avg_load * UNDERLOAD_RATIO]

            if not overloaded or not underloaded:
                continue

            for i, assignment in enumerate(batch.assignments):
                if assignment.worker_id in overloaded:
                    batch.assignments[i] = assignment.model_copy(
                        update={"worker_id": underloaded[0]}
                    )
                    logger.debug(
                        "再配分: feature=%s %s -> %s",
                        assignment.feature_id,
                        assignment.worker_id,
                        underloaded[0],
                    )
                    moved += 1
                    break

        optimized.metadata.optimized = True
        self.events.emit("plan-optimized", {"moved": moved})
        return optimized

    @staticmethod
    def get_plan_statistics(plan: ExecutionPlan) -> PlanStatistics:
        """計画の統計を取得"""
        batch_times = [b.estimated_time for b in plan.batches]
        total_time = plan.total_estimated_time

        worker_stats = {
            worker_id: WorkerPlanStats(
                features=util.assigned_features,
                estimated_time=util.estimated_time,
                utilization_percent=(util.estimated_time / total_time * 100) if total_time else 0.0,
            )
            for worker_id, util in plan.worker_utilization.items()
        }

        return PlanStatistics(
            total_batches=len(plan.batches),
            total_features=plan.total_features,
            total_estimated_time=total_time,
            avg_batch_time=sum(batch_times) / len(batch_times) if batch_times else 0.0,
            max_batch_time=max(batch_times, default=0),
            worker_stats=worker_stats,
        )
