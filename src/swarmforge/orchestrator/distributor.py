"""ワークディストリビューター - 分散実行のオーケストレーション

依存解析 → バッチ生成 → 実行計画 → 進捗初期化 の順にパイプラインを進め、
バッチごとに外部Workerコラボレーターへ Feature を並列ディスパッチする。
失敗はリトライし、バッチ間ではバックプレッシャーで新規開始を抑制する。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field
from ulid import ULID

from swarmforge.core.config import DistributionConfig, PlannerConfig, get_settings
from swarmforge.core.emitter import EventEmitter
from swarmforge.core.errors import (
    CycleError,
    DependencyValidationError,
    DistributionError,
    DistributionInProgressError,
    ExecutionError,
    WorkerNotFoundError,
)
from swarmforge.core.models import Assignment, ExecutionPlan, Feature, PlannedBatch, Worker
from swarmforge.core.state import DistributionPhase, DistributionStateMachine

from .analyzer import DependencyAnalyzer
from .collaborator import AgentOutcome, WorkerHandle, WorkerPool
from .planner import ExecutionPlanner
from .progress import FeatureStatus, ProgressAggregator
from .retry import RetryManager, RetryPolicy

logger = logging.getLogger(__name__)


# ─── 結果モデル ─────────────────────────────────────────


class FeatureResult(BaseModel):
    """Feature ごとの実行結果"""

    feature_id: str
    worker_id: str
    success: bool
    retried: bool = False
    retries: int = Field(default=0, description="消費したリトライ回数")
    duration: int = Field(default=0, description="コラボレーター報告の実行時間 (ms)")
    output: Any = None
    error: str | None = None


class DistributionResult(BaseModel):
    """分散実行全体の結果"""

    run_id: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    retried: int = 0
    duration: int = Field(default=0, description="進捗開始からの経過時間 (ms)")
    stopped: bool = Field(default=False, description="stop() により途中で打ち切られたか")
    features: dict[str, FeatureResult] = Field(default_factory=dict)
    unassigned: list[str] = Field(
        default_factory=list,
        description="適格なWorkerがなく計画から除外されたFeature ID",
    )

    def record(self, result: FeatureResult) -> None:
        """Feature 結果を集計に加える"""
        self.total += 1
        self.features[result.feature_id] = result
        if result.success:
            self.successful += 1
        else:
            self.failed += 1
        if result.retried:
            self.retried += 1


@dataclass
class _ActiveExecution:
    """ディスパッチ済みで未完了のコラボレーター呼び出し"""

    feature_id: str
    worker_id: str
    handle: WorkerHandle
    task: asyncio.Future[Any]


# ─── WorkDistributor ────────────────────────────────────


class WorkDistributor:
    """分散実行のトップレベルコントローラー

    単一の制御フローがオーケストレーションを駆動し、並行性は
    コラボレーター呼び出しのファンアウトと一括待機で得る。
    同時に実行できる分散実行は1つだけ。
    """

    def __init__(
        self,
        pool: WorkerPool,
        config: DistributionConfig | None = None,
        planner_config: PlannerConfig | None = None,
        *,
        planner: ExecutionPlanner | None = None,
    ) -> None:
        """初期化

        Args:
            pool: 外部Workerプール
            config: 分散実行設定。Noneの場合はグローバル設定を使用。
            planner_config: プランナー設定（planner 指定時は無視）
            planner: 差し替え用のプランナー
        """
        if pool is None:
            raise ValueError("Worker pool is required")

        self.pool = pool
        self.config = config or get_settings().distribution
        self.events = EventEmitter()

        self.analyzer = DependencyAnalyzer()
        self.planner = planner or ExecutionPlanner(planner_config)
        self.aggregator = ProgressAggregator(
            self.config.progress_path,
            auto_save=self.config.auto_save,
            update_interval=self.config.save_interval,
        )
        self.retries = self._new_retry_manager()

        self.current_plan: ExecutionPlan | None = None
        self._state = DistributionStateMachine()
        self._running = False
        self._run_alive = False  # distribute_work のコルーチンが生存中
        self._stop_requested = False
        self._pool_size = 0
        self._active_executions: dict[str, _ActiveExecution] = {}

        self._setup_event_forwarding()

    def _new_retry_manager(self) -> RetryManager:
        return RetryManager(
            RetryPolicy(max_retries=self.config.max_retries, delay_ms=self.config.retry_delay)
        )

    def _setup_event_forwarding(self) -> None:
        """構成コンポーネントのイベントを転送"""
        self.planner.events.on("plan-created", lambda p: self.events.emit("plan-created", p))
        self.planner.events.on("plan-optimized", lambda p: self.events.emit("plan-optimized", p))
        self.planner.events.on(
            "assignment-warning",
            lambda p: self.events.emit(
                "warning", {"message": "Feature could not be assigned", **p}
            ),
        )
        self.aggregator.events.on(
            "feature-updated", lambda p: self.events.emit("feature-progress", p)
        )
        self.aggregator.events.on(
            "save-error",
            lambda err: self.events.emit(
                "warning", {"message": "Failed to save progress", "error": str(err)}
            ),
        )

    # ─── オブザーバー ───────────────────────────────────

    def on(self, event: str, handler: Callable[[Any], None]) -> None:
        """イベントハンドラーを登録"""
        self.events.on(event, handler)

    def off(self, event: str, handler: Callable[[Any], None]) -> None:
        """イベントハンドラーを解除"""
        self.events.off(event, handler)

    @property
    def phase(self) -> DistributionPhase:
        """現在のフェーズ"""
        return self._state.current_state

    @property
    def is_running(self) -> bool:
        """分散実行が進行中か"""
        return self._running

    def _set_phase(self, phase: DistributionPhase) -> None:
        self._state.transition(phase)
        logger.info("フェーズ遷移: %s", phase)
        self.events.emit("phase", {"phase": str(phase)})

    # ─── 分散実行 ───────────────────────────────────────

    async def distribute_work(
        self,
        features: Sequence[Feature | Mapping[str, Any]],
        workers: Iterable[Worker] | None = None,
        sequential: bool | None = None,
    ) -> DistributionResult:
        """Feature 群を解析・計画し、Workerへ分散実行する

        Args:
            features: 実行する Feature
            workers: Workerロスター（省略時はプールから取得）
            sequential: バッチ内を1件ずつ実行するか（省略時は設定値）

        Returns:
            Feature ごとの結果と成功/失敗/リトライ件数

        Raises:
            DistributionInProgressError: 既に実行中の場合
            DistributionError: Feature が空の場合
            DependencyValidationError: 重複ID・agent type 欠落・未知の依存先
            CycleError: 循環依存がある場合
        """
        if self._running or self._state.is_active:
            raise DistributionInProgressError("Distribution already in progress")
        if not features:
            raise DistributionError("No features provided")

        self._running = True
        self._run_alive = True
        self._stop_requested = False
        run_id = str(ULID())
        sequential = self.config.sequential if sequential is None else sequential

        logger.info("分散実行を開始: run_id=%s features=%d", run_id, len(features))
        self.events.emit(
            "distribution-started",
            {
                "run_id": run_id,
                "features": len(features),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

        try:
            # 1. 依存関係の解析
            self._set_phase(DistributionPhase.ANALYZING_DEPENDENCIES)
            loaded = self._load_features(features)

            detection = self.analyzer.detect_cycles()
            if detection.has_cycles:
                raise CycleError(detection.cycles)

            # 2. バッチ生成
            self._set_phase(DistributionPhase.GENERATING_BATCHES)
            batches = self.analyzer.generate_batches()
            self.events.emit(
                "batches-generated", {"count": len(batches), "features": len(loaded)}
            )

            # 3. 実行計画
            self._set_phase(DistributionPhase.PLANNING_EXECUTION)
            roster = list(workers) if workers is not None else await self._get_available_workers()
            self._pool_size = len(roster)

            plan = self.planner.create_execution_plan(batches, roster)
            if self.config.auto_optimize:
                plan = self.planner.optimize_plan(plan, roster)
            self.current_plan = plan
            self.events.emit("plan-ready", self.planner.get_plan_statistics(plan).model_dump())

            # 4. 進捗の初期化
            self.retries = self._new_retry_manager()
            self.aggregator.initialize(loaded, plan)
            self.aggregator.start_auto_save()

            # 5. 実行
            self._set_phase(DistributionPhase.EXECUTING)
            result = await self._execute_plan(plan, run_id, sequential)
            result.duration = self.aggregator.get_summary()["timeline"]["duration"]

            if self._stop_requested:
                self._set_phase(DistributionPhase.IDLE)
            else:
                self._set_phase(DistributionPhase.COMPLETE)

            logger.info(
                "分散実行が完了: run_id=%s total=%d successful=%d failed=%d retried=%d",
                run_id,
                result.total,
                result.successful,
                result.failed,
                result.retried,
            )
            self.events.emit(
                "distribution-complete",
                {
                    "run_id": run_id,
                    "total": result.total,
                    "successful": result.successful,
                    "failed": result.failed,
                    "retried": result.retried,
                    "duration": result.duration,
                },
            )
            return result

        except asyncio.CancelledError:
            # 呼び出し側のキャンセル。次の Run を受け付けられるよう実行中フェーズを抜ける
            if self._state.can_transition(DistributionPhase.FAILED):
                self._set_phase(DistributionPhase.FAILED)
            logger.warning("分散実行がキャンセルされた: run_id=%s", run_id)
            self.events.emit("distribution-failed", {"run_id": run_id, "error": "cancelled"})
            raise

        except Exception as exc:
            if self._state.can_transition(DistributionPhase.FAILED):
                self._set_phase(DistributionPhase.FAILED)
            logger.error("分散実行に失敗: run_id=%s error=%s", run_id, exc)
            self.events.emit("distribution-failed", {"run_id": run_id, "error": str(exc)})
            raise

        finally:
            self.aggregator.stop_auto_save()
            self._running = False
            self._run_alive = False

    def _load_features(self, features: Iterable[Feature | Mapping[str, Any]]) -> list[Feature]:
        """アナライザーをリセットして Feature を登録・検証する

        重複ID・agent type 欠落・未知の依存先を全てまとめて報告する。
        """
        self.analyzer.reset()
        errors: list[str] = []
        loaded: list[Feature] = []

        for raw in features:
            try:
                loaded.append(self.analyzer.add_feature(raw))
            except DependencyValidationError as exc:
                errors.extend(exc.errors)

        errors.extend(self.analyzer.validate().errors)
        if errors:
            raise DependencyValidationError(errors)
        return loaded

    async def _get_available_workers(self) -> list[Worker]:
        return list(await self.pool.get_available_workers())

    async def _execute_plan(
        self, plan: ExecutionPlan, run_id: str, sequential: bool
    ) -> DistributionResult:
        """計画をバッチ順に実行する

        次のバッチは前のバッチの全割り当てが成否確定するまで開始しない。
        """
        result = DistributionResult(run_id=run_id, unassigned=plan.unassigned_features)

        for index, batch in enumerate(plan.batches):
            if index > 0 and self._is_backpressure_high():
                await self._wait_for_backpressure_release()

            if self._stop_requested:
                logger.warning("停止要求により残りのバッチを中断: batch=%d", batch.batch_number)
                result.stopped = True
                break

            self.events.emit(
                "batch-started",
                {"batch_number": batch.batch_number, "features": batch.feature_count},
            )

            if sequential:
                batch_results = await self._execute_batch_sequential(batch)
            else:
                batch_results = await self._execute_batch_parallel(batch)

            for feature_result in batch_results:
                result.record(feature_result)

            self.events.emit(
                "batch-complete",
                {
                    "batch_number": batch.batch_number,
                    "successful": sum(1 for r in batch_results if r.success),
                    "failed": sum(1 for r in batch_results if not r.success),
                },
            )

        return result

    async def _execute_batch_parallel(self, batch: PlannedBatch) -> list[FeatureResult]:
        """バッチ内の割り当てを並列実行"""
        outcomes = await asyncio.gather(
            *(self._execute_feature(a) for a in batch.assignments),
            return_exceptions=True,
        )
        results: list[FeatureResult] = []
        for assignment, outcome in zip(batch.assignments, outcomes):
            if isinstance(outcome, BaseException):
                results.append(self._unexpected_failure(assignment, outcome))
            else:
                results.append(outcome)
        return results

    async def _execute_batch_sequential(self, batch: PlannedBatch) -> list[FeatureResult]:
        """バッチ内の割り当てを1件ずつ実行"""
        results: list[FeatureResult] = []
        for assignment in batch.assignments:
            try:
                results.append(await self._execute_feature(assignment))
            except Exception as exc:
                results.append(self._unexpected_failure(assignment, exc))
        return results

    def _unexpected_failure(self, assignment: Assignment, exc: BaseException) -> FeatureResult:
        logger.error("Feature 実行中の想定外エラー: feature=%s", assignment.feature_id)
        return FeatureResult(
            feature_id=assignment.feature_id,
            worker_id=assignment.worker_id,
            success=False,
            retried=self.retries.was_retried(assignment.feature_id),
            retries=self.retries.get_attempt_count(assignment.feature_id),
            error=f"{type(exc).__name__}: {exc}",
        )

    # ─── Feature 実行 ───────────────────────────────────

    async def _execute_feature(self, assignment: Assignment) -> FeatureResult:
        """1 Feature をリトライ付きで実行する

        失敗時は固定待機の後 pending に戻して同じ割り当てを再実行する。
        リトライを使い切った Feature は failed として記録し、他の実行は継続する。
        """
        feature_id = assignment.feature_id
        worker_id = assignment.worker_id
        feature = self.analyzer.get_feature(feature_id)
        if feature is None:
            raise DistributionError(f"Assignment references unknown feature: {feature_id}")

        while True:
            self.aggregator.update_feature(
                feature_id,
                status=FeatureStatus.IN_PROGRESS,
                worker_id=worker_id,
                error=None,
                progress=0,
            )

            try:
                outcome = await self._dispatch(assignment, feature)
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                self.retries.record_failure(feature_id, worker_id, error)

                if self.retries.should_retry(feature_id):
                    attempt = self.retries.get_attempt_count(feature_id) + 1
                    logger.warning(
                        "Feature 失敗、リトライします: feature=%s attempt=%d/%d error=%s",
                        feature_id,
                        attempt,
                        self.config.max_retries,
                        error,
                    )
                    self.events.emit(
                        "feature-retry",
                        {
                            "feature_id": feature_id,
                            "attempt": attempt,
                            "max_retries": self.config.max_retries,
                            "error": error,
                        },
                    )
                    await asyncio.sleep(self.retries.get_retry_delay(feature_id))
                    self.retries.record_retry(feature_id)
                    self.aggregator.update_feature(
                        feature_id, status=FeatureStatus.PENDING, progress=0
                    )
                    continue

                retries = self.retries.get_attempt_count(feature_id)
                self.aggregator.update_feature(feature_id, status=FeatureStatus.FAILED, error=error)
                logger.error(
                    "Feature 失敗（リトライ上限）: feature=%s retries=%d error=%s",
                    feature_id,
                    retries,
                    error,
                )
                self.events.emit(
                    "feature-failed",
                    {
                        "feature_id": feature_id,
                        "worker_id": worker_id,
                        "error": error,
                        "retries": retries,
                    },
                )
                return FeatureResult(
                    feature_id=feature_id,
                    worker_id=worker_id,
                    success=False,
                    retried=retries > 0,
                    retries=retries,
                    error=error,
                )

            self.aggregator.update_feature(feature_id, status=FeatureStatus.COMPLETE, progress=100)
            duration = outcome.duration or 0
            self.events.emit(
                "feature-complete",
                {"feature_id": feature_id, "worker_id": worker_id, "duration": duration},
            )
            retries = self.retries.get_attempt_count(feature_id)
            return FeatureResult(
                feature_id=feature_id,
                worker_id=worker_id,
                success=True,
                retried=retries > 0,
                retries=retries,
                duration=duration,
                output=outcome.output,
            )

    async def _dispatch(self, assignment: Assignment, feature: Feature) -> AgentOutcome:
        """コラボレーターへ1回ディスパッチし、推定時間を上限に待機する

        タイムアウトしても呼び出し自体は未完了として残り、
        実際に戻るまでバックプレッシャーの計測対象になる。

        Raises:
            WorkerNotFoundError: 割り当て先Workerがプールにない
            ExecutionError: 失敗報告またはタイムアウト
        """
        handle = await self.pool.get_worker(assignment.worker_id)
        if handle is None:
            raise WorkerNotFoundError(assignment.worker_id)

        task_text = self.build_task_description(feature)
        execution = asyncio.ensure_future(
            handle.execute_agent(
                assignment.agent_type,
                task_text,
                context={"feature_id": feature.id, **feature.metadata},
                timeout=assignment.estimated_time,
            )
        )
        key = f"{feature.id}#{self.retries.get_attempt_count(feature.id)}"
        self._track_execution(
            key, _ActiveExecution(feature.id, assignment.worker_id, handle, execution)
        )

        try:
            result = await asyncio.wait_for(
                asyncio.shield(execution), timeout=assignment.estimated_time / 1000
            )
        except asyncio.TimeoutError:
            raise ExecutionError(
                f"Execution of {feature.id} timed out after {assignment.estimated_time}ms"
            ) from None

        outcome = AgentOutcome.from_result(result)
        if not outcome.success:
            raise ExecutionError(outcome.error or f"Agent reported failure for {feature.id}")
        return outcome

    def _track_execution(self, key: str, active: _ActiveExecution) -> None:
        """未完了集合に登録し、完了時に自動で外す"""
        self._active_executions[key] = active

        def _on_done(task: asyncio.Future[Any]) -> None:
            self._active_executions.pop(key, None)
            # タイムアウト後に失敗した呼び出しの例外を回収する
            if not task.cancelled():
                task.exception()

        active.task.add_done_callback(_on_done)

    @staticmethod
    def build_task_description(feature: Feature) -> str:
        """Feature のメタデータから Worker 向けタスク記述を組み立てる"""
        parts = [f"Feature: {feature.id}", f"Priority: {feature.priority}", ""]

        description = feature.metadata.get("description")
        if description:
            parts.append(str(description))

        requirements = feature.metadata.get("requirements")
        if requirements:
            parts.extend(["", "Requirements:"])
            parts.extend(f"- {r}" for r in requirements)

        if feature.dependencies:
            parts.extend(["", f"Dependencies: {', '.join(feature.dependencies)}"])

        return "\n".join(parts)

    # ─── バックプレッシャー ─────────────────────────────

    @property
    def outstanding_count(self) -> int:
        """未完了のコラボレーター呼び出し数"""
        return len(self._active_executions)

    def _backpressure_ratio(self) -> float:
        if self._pool_size <= 0:
            return 0.0
        return self.outstanding_count / self._pool_size

    def _is_backpressure_high(self) -> bool:
        return self._backpressure_ratio() >= self.config.backpressure_threshold

    async def _wait_for_backpressure_release(self) -> None:
        """未完了率がしきい値を下回るまで新規バッチの開始を待機"""
        logger.warning(
            "バックプレッシャー待機: outstanding=%d workers=%d",
            self.outstanding_count,
            self._pool_size,
        )
        self.events.emit(
            "backpressure-wait",
            {
                "outstanding": self.outstanding_count,
                "workers": self._pool_size,
                "ratio": self._backpressure_ratio(),
            },
        )

        while self._is_backpressure_high():
            await asyncio.sleep(self.config.backpressure_poll_interval / 1000)

        logger.info("バックプレッシャー解除: outstanding=%d", self.outstanding_count)
        self.events.emit("backpressure-released", {"outstanding": self.outstanding_count})

    # ─── 参照・停止 ─────────────────────────────────────

    def get_progress(self) -> dict[str, Any]:
        """現在の進捗を取得"""
        return {
            "phase": str(self.phase),
            "overall": self.aggregator.get_progress().model_dump(mode="json"),
            "workers": [
                w.model_dump(mode="json") for w in self.aggregator.get_all_worker_statuses()
            ],
            "features": [
                f.model_dump(mode="json") for f in self.aggregator.get_all_feature_progress()
            ],
            "plan": (
                self.planner.get_plan_statistics(self.current_plan).model_dump()
                if self.current_plan
                else None
            ),
        }

    def get_summary(self) -> dict[str, Any]:
        """実行サマリーを取得"""
        return self.aggregator.get_summary()

    async def stop(self) -> None:
        """進行中の分散実行を停止する（協調的・ベストエフォート）

        コラボレーターが cancel フックを公開している呼び出しのみキャンセルを試みる。
        実行済みの副作用は巻き戻さない。
        """
        self.events.emit("stopping")
        if self._running:
            self._stop_requested = True

        for active in list(self._active_executions.values()):
            cancel = getattr(active.handle, "cancel", None)
            if not callable(cancel):
                continue
            try:
                result = cancel(active.feature_id)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("キャンセルに失敗: feature=%s error=%s", active.feature_id, exc)
                self.events.emit(
                    "warning",
                    {
                        "message": f"Failed to cancel execution for {active.feature_id}",
                        "error": str(exc),
                    },
                )

        self._active_executions.clear()
        self._running = False

        # Run のコルーチンが既に存在しないのに実行中フェーズが残っている場合は idle に戻す
        if not self._run_alive and self._state.is_active:
            self._set_phase(DistributionPhase.IDLE)

        if self.config.progress_path:
            self.aggregator.try_save()

        self.events.emit("stopped")

    def destroy(self) -> None:
        """リソースを解放しオブザーバーを解除する"""
        self.aggregator.destroy()
        self.events.remove_all_listeners()
