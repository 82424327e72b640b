"""進捗アグリゲーター

Feature ごとの状態と Worker ごとの稼働状況を保持し、全体進捗を計算する。
状態全体を1つのJSONドキュメントとして保存・復元できる。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path
from typing import Any

import portalocker
from pydantic import BaseModel, Field, ValidationError

from swarmforge.core.emitter import EventEmitter
from swarmforge.core.errors import PersistenceError, UnknownFeatureError
from swarmforge.core.models import ExecutionPlan, Feature

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0"
LOCK_TIMEOUT_SECONDS = 10

# update_feature で「指定なし」を表す。None は値の消去を意味する
_UNSET: Any = object()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(start: str, end: datetime | None = None) -> int:
    """ISO時刻からの経過ミリ秒"""
    end = end or _now()
    return int((end - datetime.fromisoformat(start)).total_seconds() * 1000)


# ─── モデル ─────────────────────────────────────────────


class FeatureStatus(StrEnum):
    """Feature の実行ステータス"""

    NOT_STARTED = "not-started"
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETE = "complete"
    FAILED = "failed"


class FeatureProgress(BaseModel):
    """Feature ごとの進捗レコード"""

    feature_id: str
    agent_type: str
    status: FeatureStatus = FeatureStatus.NOT_STARTED
    progress: int = Field(default=0, ge=0, le=100)
    worker_id: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class WorkerStatus(BaseModel):
    """Worker ごとの稼働状況"""

    worker_id: str
    status: str = "idle"  # idle, active
    current_feature: str | None = None
    completed_features: int = 0
    failed_features: int = 0
    total_time: int = 0  # ms
    last_seen: str = Field(default_factory=lambda: _now().isoformat())


class OverallProgress(BaseModel):
    """全体進捗"""

    total_features: int = 0
    completed_features: int = 0
    in_progress_features: int = 0
    failed_features: int = 0
    pending_features: int = 0
    not_started_features: int = 0
    percent_complete: float = 0.0
    start_time: str | None = None
    estimated_end_time: str | None = None
    last_updated: str | None = None


class ProgressSnapshot(BaseModel):
    """永続化ドキュメント"""

    version: str = SNAPSHOT_VERSION
    timestamp: str = Field(default_factory=lambda: _now().isoformat())
    progress: OverallProgress
    features: list[FeatureProgress] = Field(default_factory=list)
    workers: list[WorkerStatus] = Field(default_factory=list)


# ─── ProgressAggregator ─────────────────────────────────


class ProgressAggregator:
    """分散Workerの進捗集約

    状態の変更は Work Distributor の単一制御フローからのみ行われる。
    """

    def __init__(
        self,
        persistence_path: Path | str | None = None,
        *,
        auto_save: bool = True,
        update_interval: int = 1000,
    ) -> None:
        """初期化

        Args:
            persistence_path: スナップショットの保存先（Noneなら永続化なし）
            auto_save: start_auto_save() で定期保存を行うか
            update_interval: 定期保存の間隔 (ms)
        """
        self.persistence_path = Path(persistence_path) if persistence_path else None
        self.auto_save = auto_save
        self.update_interval = update_interval
        self.events = EventEmitter()

        self._features: dict[str, FeatureProgress] = {}
        self._workers: dict[str, WorkerStatus] = {}
        self._overall = OverallProgress()
        self._auto_save_task: asyncio.Task[None] | None = None

    # ─── 初期化・更新 ───────────────────────────────────

    def initialize(self, features: Iterable[Feature], plan: ExecutionPlan | None = None) -> None:
        """Feature ごとの未着手レコードと全体進捗を作成する"""
        features = list(features)
        self._features = {
            f.id: FeatureProgress(
                feature_id=f.id,
                agent_type=f.agent_type,
                metadata=dict(f.metadata),
            )
            for f in features
        }
        self._workers = {}
        if plan is not None:
            for worker_id in plan.worker_utilization:
                self._workers[worker_id] = WorkerStatus(worker_id=worker_id)

        self._overall = OverallProgress(
            total_features=len(features),
            start_time=_now().isoformat(),
        )
        self._recalculate()

        self.events.emit(
            "initialized",
            {"features": len(self._features), "workers": len(self._workers)},
        )

    def update_feature(
        self,
        feature_id: str,
        *,
        status: FeatureStatus | str | None = None,
        progress: int | None = None,
        worker_id: str | None = _UNSET,
        error: str | None = _UNSET,
    ) -> FeatureProgress:
        """Feature の進捗を更新し、全体進捗を再計算する

        指定した項目だけを上書きする。worker_id / error に None を渡すと消去する。

        Raises:
            UnknownFeatureError: 未登録の Feature の場合
        """
        current = self._features.get(feature_id)
        if current is None:
            raise UnknownFeatureError(feature_id)

        previous = current.model_copy()

        if status is not None:
            current.status = FeatureStatus(status)
            if current.status == FeatureStatus.IN_PROGRESS and current.start_time is None:
                current.start_time = _now().isoformat()
            if current.status in (FeatureStatus.COMPLETE, FeatureStatus.FAILED):
                current.end_time = _now().isoformat()

        if progress is not None:
            current.progress = min(100, max(0, progress))
        if worker_id is not _UNSET:
            current.worker_id = worker_id
        if error is not _UNSET:
            current.error = error

        if current.worker_id:
            self._update_worker_for_feature(current, previous)

        self._recalculate()

        self.events.emit(
            "feature-updated",
            {
                "feature_id": feature_id,
                "previous": str(previous.status),
                "current": str(current.status),
                "progress": current.progress,
            },
        )
        return current.model_copy()

    def _update_worker_for_feature(
        self, current: FeatureProgress, previous: FeatureProgress
    ) -> None:
        """Feature の状態変化に合わせて Worker 状況を更新"""
        worker_id = current.worker_id
        assert worker_id is not None
        worker = self._workers.get(worker_id)
        if worker is None:
            worker = self._workers[worker_id] = WorkerStatus(worker_id=worker_id)

        worker.last_seen = _now().isoformat()

        if current.status == FeatureStatus.IN_PROGRESS:
            worker.status = "active"
            worker.current_feature = current.feature_id

        if current.status == FeatureStatus.COMPLETE and previous.status != FeatureStatus.COMPLETE:
            worker.completed_features += 1
            worker.current_feature = None
            worker.status = "idle"
            if current.start_time and current.end_time:
                worker.total_time += _elapsed_ms(
                    current.start_time, datetime.fromisoformat(current.end_time)
                )

        if current.status == FeatureStatus.FAILED and previous.status != FeatureStatus.FAILED:
            worker.failed_features += 1
            worker.current_feature = None
            worker.status = "idle"

    def _recalculate(self) -> None:
        """全体進捗を再計算"""
        counts = dict.fromkeys(FeatureStatus, 0)
        for record in self._features.values():
            counts[record.status] += 1

        overall = self._overall
        overall.completed_features = counts[FeatureStatus.COMPLETE]
        overall.in_progress_features = counts[FeatureStatus.IN_PROGRESS]
        overall.failed_features = counts[FeatureStatus.FAILED]
        overall.pending_features = counts[FeatureStatus.PENDING]
        overall.not_started_features = counts[FeatureStatus.NOT_STARTED]

        total = overall.total_features
        completed = overall.completed_features
        overall.percent_complete = (completed / total * 100) if total else 0.0
        overall.last_updated = _now().isoformat()

        # 完了ペースから終了時刻を推定
        if completed > 0 and overall.start_time:
            per_feature = _elapsed_ms(overall.start_time) / completed
            remaining_ms = per_feature * (total - completed)
            overall.estimated_end_time = datetime.fromtimestamp(
                _now().timestamp() + remaining_ms / 1000, tz=timezone.utc
            ).isoformat()

    # ─── 参照 ───────────────────────────────────────────

    def get_progress(self) -> OverallProgress:
        """全体進捗のスナップショット"""
        return self._overall.model_copy()

    def get_feature_progress(self, feature_id: str) -> FeatureProgress | None:
        """Feature の進捗を取得"""
        record = self._features.get(feature_id)
        return record.model_copy() if record else None

    def get_worker_status(self, worker_id: str) -> WorkerStatus | None:
        """Worker の状況を取得"""
        status = self._workers.get(worker_id)
        return status.model_copy() if status else None

    def get_all_feature_progress(self) -> list[FeatureProgress]:
        """全 Feature の進捗"""
        return [r.model_copy() for r in self._features.values()]

    def get_all_worker_statuses(self) -> list[WorkerStatus]:
        """全 Worker の状況"""
        return [w.model_copy() for w in self._workers.values()]

    def get_summary(self) -> dict[str, Any]:
        """サマリーレポートを取得"""
        progress = self.get_progress()
        return {
            "progress": progress.model_dump(mode="json"),
            "workers": [
                {
                    "id": w.worker_id,
                    "status": w.status,
                    "completed": w.completed_features,
                    "failed": w.failed_features,
                    "active": w.current_feature is not None,
                }
                for w in self._workers.values()
            ],
            "timeline": {
                "started": progress.start_time,
                "estimated_end": progress.estimated_end_time,
                "duration": _elapsed_ms(progress.start_time) if progress.start_time else 0,
            },
        }

    # ─── 永続化 ─────────────────────────────────────────

    def _resolve_path(self, file_path: Path | str | None) -> Path:
        target = Path(file_path) if file_path else self.persistence_path
        if target is None:
            raise PersistenceError("No persistence path configured")
        return target

    @staticmethod
    def _lock_path(target: Path) -> Path:
        return target.with_name(target.name + ".lock")

    def save(self, file_path: Path | str | None = None) -> Path:
        """状態全体を1ドキュメントとして上書き保存する

        Raises:
            PersistenceError: 保存先未設定または書き込み失敗
        """
        target = self._resolve_path(file_path)
        snapshot = ProgressSnapshot(
            progress=self._overall,
            features=list(self._features.values()),
            workers=list(self._workers.values()),
        )
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with portalocker.Lock(self._lock_path(target), mode="a", timeout=LOCK_TIMEOUT_SECONDS):
                tmp = target.with_name(target.name + ".tmp")
                tmp.write_text(snapshot.model_dump_json(indent=2), encoding="utf-8")
                tmp.replace(target)
        except (OSError, portalocker.LockException) as exc:
            raise PersistenceError(f"Failed to save progress to {target}: {exc}") from exc

        self.events.emit("saved", str(target))
        return target

    def load(self, file_path: Path | str | None = None) -> ProgressSnapshot:
        """保存済みドキュメントから状態全体を復元する

        Raises:
            PersistenceError: 保存先未設定、読み込み失敗、形式不正
        """
        target = self._resolve_path(file_path)
        try:
            with portalocker.Lock(self._lock_path(target), mode="a", timeout=LOCK_TIMEOUT_SECONDS):
                content = target.read_text(encoding="utf-8")
            snapshot = ProgressSnapshot.model_validate_json(content)
        except (OSError, portalocker.LockException) as exc:
            raise PersistenceError(f"Failed to load progress from {target}: {exc}") from exc
        except ValidationError as exc:
            raise PersistenceError(f"Invalid progress snapshot {target}: {exc}") from exc

        self._overall = snapshot.progress
        self._features = {f.feature_id: f for f in snapshot.features}
        self._workers = {w.worker_id: w for w in snapshot.workers}

        self.events.emit("loaded", str(target))
        return snapshot

    def try_save(self) -> bool:
        """保存を試み、失敗は警告として通知する（例外は送出しない）"""
        try:
            self.save()
        except PersistenceError as exc:
            logger.warning("進捗の保存に失敗: %s", exc)
            self.events.emit("save-error", exc)
            return False
        return True

    def start_auto_save(self) -> bool:
        """定期保存タスクを開始する（実行中のイベントループが必要）

        Returns:
            開始したか（永続化なし・無効・既に実行中なら False）
        """
        if not (self.auto_save and self.persistence_path):
            return False
        if self._auto_save_task is not None and not self._auto_save_task.done():
            return False
        self._auto_save_task = asyncio.get_running_loop().create_task(self._auto_save_loop())
        return True

    async def _auto_save_loop(self) -> None:
        while True:
            await asyncio.sleep(self.update_interval / 1000)
            self.try_save()

    def stop_auto_save(self) -> None:
        """定期保存タスクを停止"""
        if self._auto_save_task is not None:
            self._auto_save_task.cancel()
            self._auto_save_task = None

    def destroy(self) -> None:
        """定期保存を止め、オブザーバーを全て解除する"""
        self.stop_auto_save()
        self.events.remove_all_listeners()
