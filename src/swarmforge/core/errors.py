"""SwarmForge 例外定義

分散作業スケジューリングで発生するエラーの階層。
Run全体を失敗させるもの（検証・循環）と、Feature単位で
リトライ対象となるもの（実行・Worker不在）を区別する。
"""

from __future__ import annotations


class SwarmForgeError(Exception):
    """SwarmForge 例外の基底クラス"""

    pass


# ─── 依存グラフ ─────────────────────────────────────────


class DependencyValidationError(SwarmForgeError):
    """依存関係の検証エラー

    全ての違反をまとめて保持する（最初の1件だけではない）。
    """

    def __init__(self, errors: list[str] | str) -> None:
        self.errors = [errors] if isinstance(errors, str) else list(errors)
        super().__init__("Dependency validation failed: " + ", ".join(self.errors))


class MissingFeatureIdError(DependencyValidationError):
    """Feature に id がない"""


class DuplicateFeatureError(DependencyValidationError):
    """Feature id の重複"""

    def __init__(self, feature_id: str) -> None:
        self.feature_id = feature_id
        super().__init__(f"Feature already exists: {feature_id}")


class MissingAgentTypeError(DependencyValidationError):
    """Feature に agent type がない"""

    def __init__(self, feature_id: str) -> None:
        self.feature_id = feature_id
        super().__init__(f"Feature {feature_id} must have an agent type")


class CycleError(SwarmForgeError):
    """循環依存の検出

    検出した全ての循環パスを保持する。
    """

    def __init__(self, cycles: list[list[str]]) -> None:
        self.cycles = [list(c) for c in cycles]
        paths = "; ".join(" -> ".join(c) for c in self.cycles)
        super().__init__(f"Circular dependencies detected: {paths}")


class GraphConsistencyError(SwarmForgeError):
    """グラフ内部整合性の破綻（検出漏れの循環など）"""

    pass


# ─── 計画・実行 ─────────────────────────────────────────


class PlanningError(SwarmForgeError):
    """実行計画を作成できない"""

    pass


class DistributionError(SwarmForgeError):
    """分散実行全体のエラー"""

    pass


class DistributionInProgressError(DistributionError):
    """既に分散実行が進行中"""

    pass


class UnknownFeatureError(SwarmForgeError, KeyError):
    """進捗管理に登録されていない Feature"""

    def __init__(self, feature_id: str) -> None:
        self.feature_id = feature_id
        super().__init__(f"Unknown feature: {feature_id}")

    def __str__(self) -> str:
        return f"Unknown feature: {self.feature_id}"


class ExecutionError(SwarmForgeError):
    """Worker での実行失敗（タイムアウトを含む）"""

    pass


class WorkerNotFoundError(ExecutionError):
    """割り当て先 Worker がプールに存在しない"""

    def __init__(self, worker_id: str) -> None:
        self.worker_id = worker_id
        super().__init__(f"Worker not found: {worker_id}")


class PersistenceError(SwarmForgeError):
    """進捗スナップショットの保存・読み込み失敗"""

    pass
