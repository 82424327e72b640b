"""依存関係アナライザーのテスト"""

import pytest

from swarmforge.core.errors import (
    CycleError,
    DependencyValidationError,
    DuplicateFeatureError,
    MissingAgentTypeError,
    MissingFeatureIdError,
)
from swarmforge.core.models import Feature, Priority
from swarmforge.orchestrator.analyzer import DependencyAnalyzer


def _analyzer(*features):
    analyzer = DependencyAnalyzer()
    analyzer.add_features(features)
    return analyzer


def _ids(batches):
    return [[f.id for f in batch] for batch in batches]


class TestAddFeature:
    """Feature 追加のテスト"""

    def test_add_feature_fills_defaults(self):
        """省略されたフィールドはデフォルト値で補完される"""
        # Arrange
        analyzer = DependencyAnalyzer()

        # Act
        feature = analyzer.add_feature({"id": "A", "agent_type": "backend"})

        # Assert
        assert feature.priority == Priority.MEDIUM
        assert feature.dependencies == []
        assert feature.metadata == {}
        assert "A" in analyzer
        assert len(analyzer) == 1

    def test_add_feature_accepts_agent_alias(self):
        """agent / agentType キーでも agent type を受け付ける"""
        # Arrange
        analyzer = DependencyAnalyzer()

        # Act
        a = analyzer.add_feature({"id": "A", "agent": "frontend"})
        b = analyzer.add_feature({"id": "B", "agentType": "tester"})

        # Assert
        assert a.agent_type == "frontend"
        assert b.agent_type == "tester"

    def test_add_feature_model_instance(self):
        """Feature モデルをそのまま追加できる"""
        # Arrange
        analyzer = DependencyAnalyzer()
        feature = Feature(id="A", agent_type="backend", priority=Priority.HIGH)

        # Act
        added = analyzer.add_feature(feature)

        # Assert
        assert added is feature
        assert analyzer.get_feature("A") is feature

    def test_duplicate_id_raises(self):
        """重複IDは DuplicateFeatureError"""
        # Arrange
        analyzer = _analyzer({"id": "A", "agent_type": "backend"})

        # Act & Assert
        with pytest.raises(DuplicateFeatureError) as exc_info:
            analyzer.add_feature({"id": "A", "agent_type": "frontend"})
        assert exc_info.value.feature_id == "A"
        assert isinstance(exc_info.value, DependencyValidationError)

    def test_missing_agent_type_raises(self):
        """agent type がない Feature は MissingAgentTypeError"""
        # Arrange
        analyzer = DependencyAnalyzer()

        # Act & Assert
        with pytest.raises(MissingAgentTypeError):
            analyzer.add_feature({"id": "A"})
        assert len(analyzer) == 0

    def test_missing_id_raises(self):
        """id がない Feature は MissingFeatureIdError"""
        # Arrange
        analyzer = DependencyAnalyzer()

        # Act & Assert
        with pytest.raises(MissingFeatureIdError):
            analyzer.add_feature({"agent_type": "backend"})

    def test_invalid_priority_is_validation_error(self):
        """不正な優先度は DependencyValidationError に変換される"""
        # Arrange
        analyzer = DependencyAnalyzer()

        # Act & Assert
        with pytest.raises(DependencyValidationError):
            analyzer.add_feature({"id": "A", "agent_type": "backend", "priority": "urgent"})

    def test_add_feature_emits_event(self):
        """追加時に feature-added イベントが発行される"""
        # Arrange
        analyzer = DependencyAnalyzer()
        added = []
        analyzer.events.on("feature-added", added.append)

        # Act
        analyzer.add_feature({"id": "A", "agent_type": "backend"})

        # Assert
        assert added == ["A"]


class TestValidate:
    """依存参照の検証テスト"""

    def test_unknown_dependency_is_reported(self):
        """未知の依存先はエラーとして報告される"""
        # Arrange
        analyzer = _analyzer(
            {"id": "A", "agent_type": "backend", "dependencies": ["Z"]},
            {"id": "B", "agent_type": "backend", "dependencies": ["Y"]},
        )

        # Act
        result = analyzer.validate()

        # Assert: 全ての違反が報告される
        assert result.valid is False
        assert len(result.errors) == 2
        assert 'Feature "A" depends on unknown feature "Z"' in result.errors

    def test_forward_reference_is_valid(self):
        """後から追加された Feature への依存も検証時には解決される"""
        # Arrange
        analyzer = _analyzer(
            {"id": "C", "agent_type": "backend", "dependencies": ["A"]},
            {"id": "A", "agent_type": "backend"},
        )

        # Act
        result = analyzer.validate()

        # Assert
        assert result.valid is True
        assert result.errors == []

    def test_cycle_is_valid_reference(self):
        """循環していても参照が全て既知なら valid"""
        # Arrange
        analyzer = _analyzer(
            {"id": "X", "agent_type": "backend", "dependencies": ["Y"]},
            {"id": "Y", "agent_type": "backend", "dependencies": ["X"]},
        )

        # Act & Assert
        assert analyzer.validate().valid is True


class TestDetectCycles:
    """循環検出のテスト"""

    def test_two_node_cycle(self):
        """X→Y→X の循環が閉じたパスで報告される"""
        # Arrange
        analyzer = _analyzer(
            {"id": "X", "agent_type": "backend", "dependencies": ["Y"]},
            {"id": "Y", "agent_type": "backend", "dependencies": ["X"]},
        )

        # Act
        result = analyzer.detect_cycles()

        # Assert
        assert result.has_cycles is True
        assert result.cycles == [["X", "Y", "X"]]

    def test_self_dependency_is_cycle(self):
        """自己依存は1辺の循環"""
        # Arrange
        analyzer = _analyzer({"id": "A", "agent_type": "backend", "dependencies": ["A"]})

        # Act
        result = analyzer.detect_cycles()

        # Assert
        assert result.has_cycles is True
        assert result.cycles == [["A", "A"]]

    def test_cycle_paths_follow_edges(self):
        """報告された循環パスの連続する要素は全て依存辺で繋がっている"""
        # Arrange
        analyzer = _analyzer(
            {"id": "A", "agent_type": "backend", "dependencies": ["B"]},
            {"id": "B", "agent_type": "backend", "dependencies": ["C"]},
            {"id": "C", "agent_type": "backend", "dependencies": ["A"]},
            {"id": "D", "agent_type": "backend", "dependencies": ["E"]},
            {"id": "E", "agent_type": "backend", "dependencies": ["D"]},
            {"id": "F", "agent_type": "backend"},
        )

        # Act
        result = analyzer.detect_cycles()

        # Assert
        assert len(result.cycles) == 2
        for cycle in result.cycles:
            assert cycle[0] == cycle[-1]
            for current, nxt in zip(cycle, cycle[1:]):
                assert nxt in analyzer.get_dependencies(current)

    def test_acyclic_graph(self):
        """循環がなければ has_cycles は False"""
        # Arrange
        analyzer = _analyzer(
            {"id": "A", "agent_type": "backend"},
            {"id": "B", "agent_type": "backend", "dependencies": ["A"]},
        )

        # Act
        result = analyzer.detect_cycles()

        # Assert
        assert result.has_cycles is False
        assert result.cycles == []

    def test_deep_chain_does_not_overflow(self):
        """深い依存チェーンでも再帰上限に達しない"""
        # Arrange
        analyzer = DependencyAnalyzer()
        analyzer.add_feature({"id": "N0", "agent_type": "backend"})
        for i in range(1, 3000):
            analyzer.add_feature(
                {"id": f"N{i}", "agent_type": "backend", "dependencies": [f"N{i - 1}"]}
            )

        # Act
        result = analyzer.detect_cycles()

        # Assert
        assert result.has_cycles is False


class TestTopologicalSort:
    """トポロジカルソートのテスト"""

    def test_dependencies_come_first(self):
        """全ての依存先は依存元より前に並ぶ"""
        # Arrange: ダイヤモンド型
        analyzer = _analyzer(
            {"id": "D", "agent_type": "backend", "dependencies": ["B", "C"]},
            {"id": "B", "agent_type": "backend", "dependencies": ["A"]},
            {"id": "C", "agent_type": "backend", "dependencies": ["A"]},
            {"id": "A", "agent_type": "backend"},
        )

        # Act
        order = analyzer.topological_sort()

        # Assert
        assert sorted(order) == ["A", "B", "C", "D"]
        position = {fid: i for i, fid in enumerate(order)}
        for fid in order:
            for dep in analyzer.get_dependencies(fid):
                assert position[dep] < position[fid]

    def test_unknown_dependency_raises(self):
        """未知の依存先があれば DependencyValidationError"""
        # Arrange
        analyzer = _analyzer({"id": "A", "agent_type": "backend", "dependencies": ["Z"]})

        # Act & Assert
        with pytest.raises(DependencyValidationError) as exc_info:
            analyzer.topological_sort()
        assert "Z" in exc_info.value.errors[0]

    def test_cycle_raises(self):
        """循環があれば CycleError"""
        # Arrange
        analyzer = _analyzer(
            {"id": "X", "agent_type": "backend", "dependencies": ["Y"]},
            {"id": "Y", "agent_type": "backend", "dependencies": ["X"]},
        )

        # Act & Assert
        with pytest.raises(CycleError) as exc_info:
            analyzer.topological_sort()
        assert exc_info.value.cycles == [["X", "Y", "X"]]


class TestGenerateBatches:
    """バッチ生成のテスト"""

    def test_independent_features_share_first_batch(self):
        """依存のない A, B は同じバッチ、A に依存する C は次のバッチ"""
        # Arrange
        analyzer = _analyzer(
            {"id": "A", "agent_type": "backend"},
            {"id": "B", "agent_type": "frontend"},
            {"id": "C", "agent_type": "tester", "dependencies": ["A"]},
        )

        # Act
        batches = analyzer.generate_batches()

        # Assert
        assert _ids(batches) == [["A", "B"], ["C"]]

    def test_batches_partition_features(self):
        """全 Feature がちょうど1回ずつ現れ、依存先は前のバッチにある"""
        # Arrange
        analyzer = _analyzer(
            {"id": "A", "agent_type": "backend"},
            {"id": "B", "agent_type": "backend", "dependencies": ["A"]},
            {"id": "C", "agent_type": "backend", "dependencies": ["A"]},
            {"id": "D", "agent_type": "backend", "dependencies": ["B", "C"]},
            {"id": "E", "agent_type": "backend"},
            {"id": "F", "agent_type": "backend", "dependencies": ["E", "D"]},
        )

        # Act
        batches = analyzer.generate_batches()

        # Assert
        flat = [f.id for batch in batches for f in batch]
        assert sorted(flat) == ["A", "B", "C", "D", "E", "F"]
        assert len(flat) == len(set(flat))
        batch_of = {f.id: i for i, batch in enumerate(batches) for f in batch}
        for fid, index in batch_of.items():
            for dep in analyzer.get_dependencies(fid):
                assert batch_of[dep] < index
        assert _ids(batches) == [["A", "E"], ["B", "C"], ["D"], ["F"]]

    def test_cycle_raises(self):
        """循環があるとバッチ生成は CycleError"""
        # Arrange
        analyzer = _analyzer({"id": "A", "agent_type": "backend", "dependencies": ["A"]})

        # Act & Assert
        with pytest.raises(CycleError):
            analyzer.generate_batches()


class TestQueries:
    """参照系のテスト"""

    @pytest.fixture
    def analyzer(self):
        return _analyzer(
            {"id": "A", "agent_type": "backend"},
            {"id": "B", "agent_type": "frontend"},
            {"id": "C", "agent_type": "tester", "dependencies": ["A", "B"]},
        )

    def test_dependents_and_dependencies(self, analyzer):
        """依存元・依存先を双方向に参照できる"""
        assert analyzer.get_dependents("A") == ["C"]
        assert analyzer.get_dependencies("C") == ["A", "B"]
        assert analyzer.get_dependents("C") == []
        assert analyzer.get_dependencies("unknown") == []

    def test_roots_and_leaves(self, analyzer):
        """ルートは依存先なし、リーフは依存元なし"""
        assert [f.id for f in analyzer.get_root_features()] == ["A", "B"]
        assert [f.id for f in analyzer.get_leaf_features()] == ["C"]

    def test_statistics(self, analyzer):
        """グラフ統計が計算される"""
        # Act
        stats = analyzer.get_statistics()

        # Assert
        assert stats.total_features == 3
        assert stats.root_features == 2
        assert stats.leaf_features == 1
        assert stats.total_batches == 2
        assert stats.max_parallelism == 2
        assert stats.avg_batch_size == 1.5
        assert stats.avg_dependencies == pytest.approx(2 / 3)

    def test_statistics_empty_graph(self):
        """空のグラフの統計は全てゼロ"""
        stats = DependencyAnalyzer().get_statistics()

        assert stats.total_features == 0
        assert stats.total_batches == 0
        assert stats.avg_batch_size == 0.0

    def test_to_dict(self, analyzer):
        """可視化用に書き出せる"""
        # Act
        data = analyzer.to_dict()

        # Assert
        assert [f["id"] for f in data["features"]] == ["A", "B", "C"]
        assert {"id": "C", "dependencies": ["A", "B"]} in data["dependencies"]
        assert data["statistics"]["total_batches"] == 2

    def test_reset_clears_graph(self, analyzer):
        """reset で全 Feature と依存関係がクリアされる"""
        # Arrange
        events = []
        analyzer.events.on("reset", events.append)

        # Act
        analyzer.reset()

        # Assert
        assert len(analyzer) == 0
        assert analyzer.get_dependents("A") == []
        assert analyzer.features == {}
        assert events == [None]
        # 同じIDを再登録できる
        analyzer.add_feature({"id": "A", "agent_type": "backend"})
        assert "A" in analyzer
