"""リトライマネージャー

Feature 実行失敗時のリトライ回数と待機時間を管理する。
待機時間は固定（指数バックオフはしない）。
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class RetryPolicy:
    """リトライポリシー"""

    max_retries: int = 3
    delay_ms: int = 5000


@dataclass
class FeatureRetryState:
    """Feature のリトライ状態"""

    feature_id: str
    attempt: int = 0
    failed_workers: list[str] = field(default_factory=list)
    last_error: str | None = None


@dataclass
class RetryManager:
    """リトライマネージャー

    Run ごとに生成し、Feature ごとのリトライ回数を保持する。
    """

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    _retry_states: dict[str, FeatureRetryState] = field(default_factory=dict)

    def record_failure(self, feature_id: str, worker_id: str, error: str) -> None:
        """失敗を記録"""
        state = self._retry_states.setdefault(feature_id, FeatureRetryState(feature_id))
        state.failed_workers.append(worker_id)
        state.last_error = error

    def should_retry(self, feature_id: str) -> bool:
        """リトライすべきかどうか"""
        return self.get_attempt_count(feature_id) < self.policy.max_retries

    def record_retry(self, feature_id: str) -> int:
        """リトライを1回消費し、消費後の回数を返す"""
        state = self._retry_states.setdefault(feature_id, FeatureRetryState(feature_id))
        state.attempt += 1
        return state.attempt

    def get_retry_delay(self, feature_id: str) -> float:
        """リトライまでの待機秒数（固定）"""
        return self.policy.delay_ms / 1000

    def get_retry_state(self, feature_id: str) -> FeatureRetryState | None:
        """リトライ状態を取得"""
        return self._retry_states.get(feature_id)

    def get_attempt_count(self, feature_id: str) -> int:
        """リトライ回数を取得"""
        state = self._retry_states.get(feature_id)
        return state.attempt if state else 0

    def was_retried(self, feature_id: str) -> bool:
        """1回以上リトライしたか"""
        return self.get_attempt_count(feature_id) > 0

    def reset(self) -> None:
        """全リトライ状態をクリア"""
        self._retry_states.clear()
