"""依存関係アナライザー - 依存グラフの構築とバッチ分割

Feature の依存関係から有向グラフを構築し、参照検証・循環検出・
トポロジカルソートを行い、最大並列度のバッチ列に分割する。
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from pydantic import ValidationError

from swarmforge.core.emitter import EventEmitter
from swarmforge.core.errors import (
    CycleError,
    DependencyValidationError,
    DuplicateFeatureError,
    GraphConsistencyError,
    MissingAgentTypeError,
    MissingFeatureIdError,
)
from swarmforge.core.models import Feature

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    """依存参照の検証結果"""

    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class CycleDetectionResult:
    """循環検出結果

    各循環パスは先頭IDを末尾に繰り返して閉じる（例: ["X", "Y", "X"]）。
    """

    has_cycles: bool
    cycles: list[list[str]] = field(default_factory=list)


@dataclass(frozen=True)
class GraphStatistics:
    """依存グラフの統計"""

    total_features: int
    root_features: int
    leaf_features: int
    total_batches: int
    max_parallelism: int
    avg_batch_size: float
    avg_dependencies: float

    def to_dict(self) -> dict[str, Any]:
        """辞書に変換"""
        return asdict(self)


class DependencyAnalyzer:
    """Feature 依存グラフのアナライザー

    順方向（id → 依存先）と逆方向（id → 依存元）の隣接を
    挿入のたびに整合させて保持する。参照先の存在は挿入時ではなく
    validate() で検証する。
    """

    def __init__(self) -> None:
        self.events = EventEmitter()
        self._features: dict[str, Feature] = {}
        self._dependencies: dict[str, set[str]] = {}
        self._dependents: dict[str, set[str]] = {}
        self._index: dict[str, int] = {}

    # ─── 構築 ───────────────────────────────────────────

    @property
    def features(self) -> dict[str, Feature]:
        """登録済み Feature（id → Feature）"""
        return dict(self._features)

    def __len__(self) -> int:
        return len(self._features)

    def __contains__(self, feature_id: object) -> bool:
        return feature_id in self._features

    def add_feature(self, feature: Feature | Mapping[str, Any]) -> Feature:
        """Feature をグラフに追加する

        Raises:
            MissingFeatureIdError: id がない場合
            DuplicateFeatureError: id が既に存在する場合
            MissingAgentTypeError: agent type がない場合
        """
        normalized = self._normalize(feature)

        self._index[normalized.id] = len(self._features)
        self._features[normalized.id] = normalized
        self._dependencies[normalized.id] = set(normalized.dependencies)
        self._dependents.setdefault(normalized.id, set())

        # 逆方向グラフ（未登録の依存先もエントリを作る）
        for dep_id in normalized.dependencies:
            self._dependents.setdefault(dep_id, set()).add(normalized.id)

        self.events.emit("feature-added", normalized.id)
        return normalized

    def add_features(self, features: Iterable[Feature | Mapping[str, Any]]) -> int:
        """複数の Feature を追加し、追加件数を返す"""
        count = 0
        for feature in features:
            self.add_feature(feature)
            count += 1
        return count

    def _normalize(self, feature: Feature | Mapping[str, Any]) -> Feature:
        """入力を Feature に正規化（デフォルト値の補完）"""
        if isinstance(feature, Feature):
            if feature.id in self._features:
                raise DuplicateFeatureError(feature.id)
            return feature

        feature_id = feature.get("id")
        if not feature_id:
            raise MissingFeatureIdError("Feature must have an id")
        if feature_id in self._features:
            raise DuplicateFeatureError(feature_id)
        agent_type = feature.get("agent_type") or feature.get("agent") or feature.get("agentType")
        if not agent_type:
            raise MissingAgentTypeError(feature_id)

        try:
            return Feature(
                id=feature_id,
                agent_type=agent_type,
                priority=feature.get("priority") or "medium",
                dependencies=list(feature.get("dependencies") or []),
                metadata=dict(feature.get("metadata") or {}),
            )
        except ValidationError as exc:
            raise DependencyValidationError(
                f"Feature {feature_id} is invalid: {exc.error_count()} error(s)"
            ) from exc

    def reset(self) -> None:
        """全 Feature と依存関係をクリア"""
        self._features.clear()
        self._dependencies.clear()
        self._dependents.clear()
        self._index.clear()
        self.events.emit("reset")

    # ─── 検証 ───────────────────────────────────────────

    def validate(self) -> ValidationResult:
        """全ての依存先が既知の Feature か検証する（循環は検査しない）"""
        errors: list[str] = []
        for feature_id, deps in self._dependencies.items():
            for dep_id in self._ordered(deps):
                if dep_id not in self._features:
                    errors.append(f'Feature "{feature_id}" depends on unknown feature "{dep_id}"')

        if errors:
            self.events.emit("validation-failed", errors)
        else:
            self.events.emit("validation-success")
        return ValidationResult(valid=not errors, errors=errors)

    def detect_cycles(self) -> CycleDetectionResult:
        """深さ優先探索で循環依存を検出する

        再帰スタック上のノードへ再訪したとき、現在のパスの循環部分を
        記録する。自己依存は1辺の循環として検出される。
        """
        visited: set[str] = set()
        on_stack: set[str] = set()
        cycles: list[list[str]] = []

        for start in self._features:
            if start in visited:
                continue

            path: list[str] = [start]
            stack: list[Iterator[str]] = [iter(self._ordered(self._dependencies[start]))]
            visited.add(start)
            on_stack.add(start)

            while stack:
                dep_id = next(stack[-1], None)
                if dep_id is None:
                    on_stack.discard(path.pop())
                    stack.pop()
                    continue
                if dep_id in on_stack:
                    cycle_start = path.index(dep_id)
                    cycles.append(path[cycle_start:] + [dep_id])
                    continue
                if dep_id in visited or dep_id not in self._features:
                    continue

                visited.add(dep_id)
                on_stack.add(dep_id)
                path.append(dep_id)
                stack.append(iter(self._ordered(self._dependencies[dep_id])))

        if cycles:
            logger.warning("循環依存を検出: %s", cycles)
            self.events.emit("cycles-detected", cycles)
        return CycleDetectionResult(has_cycles=bool(cycles), cycles=cycles)

    # ─── 順序付け ───────────────────────────────────────

    def topological_sort(self) -> list[str]:
        """依存関係を満たす全順序を返す（Kahn's algorithm）

        Raises:
            DependencyValidationError: 未知の依存先がある場合
            CycleError: 循環依存がある場合
            GraphConsistencyError: 整列結果が Feature 数に満たない場合
        """
        validation = self.validate()
        if not validation.valid:
            raise DependencyValidationError(validation.errors)

        detection = self.detect_cycles()
        if detection.has_cycles:
            raise CycleError(detection.cycles)

        in_degree = {fid: len(deps) for fid, deps in self._dependencies.items()}
        queue = deque(fid for fid in self._features if in_degree[fid] == 0)
        sorted_ids: list[str] = []

        while queue:
            current = queue.popleft()
            sorted_ids.append(current)
            for dependent in self._ordered(self._dependents.get(current, ())):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    queue.append(dependent)

        if len(sorted_ids) != len(self._features):
            raise GraphConsistencyError(
                f"Failed to sort: {len(self._features) - len(sorted_ids)} features unreachable"
            )

        self.events.emit("topological-sort-complete", sorted_ids)
        return sorted_ids

    def generate_batches(self) -> list[list[Feature]]:
        """並列実行可能なバッチ列を生成する

        トポロジカル順を繰り返し走査し、依存先が全て配置済みの
        未配置 Feature をまとめて次のバッチとする。

        Returns:
            list[list[Feature]]: 例: [[A, B], [C]] → A/B は並列、C は後続
        """
        sorted_ids = self.topological_sort()
        batches: list[list[Feature]] = []
        placed: set[str] = set()

        while len(placed) < len(sorted_ids):
            ready = [
                fid
                for fid in sorted_ids
                if fid not in placed and self._dependencies[fid] <= placed
            ]
            if not ready:
                raise GraphConsistencyError("No placeable feature left while building batches")
            placed.update(ready)
            batches.append([self._features[fid] for fid in ready])

        self.events.emit("batches-generated", {"count": len(batches), "features": len(placed)})
        return batches

    # ─── 参照 ───────────────────────────────────────────

    def get_feature(self, feature_id: str) -> Feature | None:
        """Feature を取得"""
        return self._features.get(feature_id)

    def get_dependents(self, feature_id: str) -> list[str]:
        """直接の依存元 Feature ID"""
        return self._ordered(self._dependents.get(feature_id, ()))

    def get_dependencies(self, feature_id: str) -> list[str]:
        """直接の依存先 Feature ID"""
        return self._ordered(self._dependencies.get(feature_id, ()))

    def get_root_features(self) -> list[Feature]:
        """依存先を持たない Feature"""
        return [self._features[fid] for fid, deps in self._dependencies.items() if not deps]

    def get_leaf_features(self) -> list[Feature]:
        """依存元を持たない Feature"""
        return [f for fid, f in self._features.items() if not self._dependents.get(fid)]

    def get_statistics(self) -> GraphStatistics:
        """グラフの統計を取得"""
        total = len(self._features)
        batches = self.generate_batches() if total else []
        sizes = [len(b) for b in batches]
        return GraphStatistics(
            total_features=total,
            root_features=len(self.get_root_features()),
            leaf_features=len(self.get_leaf_features()),
            total_batches=len(batches),
            max_parallelism=max(sizes, default=0),
            avg_batch_size=sum(sizes) / len(sizes) if sizes else 0.0,
            avg_dependencies=(
                sum(len(d) for d in self._dependencies.values()) / total if total else 0.0
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """可視化用にグラフを書き出す"""
        return {
            "features": [f.model_dump(mode="json") for f in self._features.values()],
            "dependencies": [
                {"id": fid, "dependencies": self._ordered(deps)}
                for fid, deps in self._dependencies.items()
            ],
            "statistics": self.get_statistics().to_dict(),
        }

    def _ordered(self, ids: Iterable[str]) -> list[str]:
        """ID を登録順に並べる（未登録IDは末尾に名前順）"""
        index = self._index
        known = sorted((i for i in ids if i in index), key=index.__getitem__)
        unknown = sorted(i for i in ids if i not in index)
        return known + unknown
