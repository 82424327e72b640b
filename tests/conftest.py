"""SwarmForge テスト設定"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from swarmforge.core.config import DistributionConfig, PlannerConfig
from swarmforge.core.models import Worker, WorkerCapabilities


class FakeWorkerHandle:
    """コラボレーターのテスト用Worker

    behavior(feature_id, attempt) を指定すると戻り値/例外をFeatureごとに制御できる。
    """

    def __init__(self, worker_id: str, behavior=None) -> None:
        self.worker_id = worker_id
        self.behavior = behavior
        self.calls: list[dict[str, Any]] = []
        self._attempts: dict[str, int] = {}

    async def execute_agent(self, agent_type, task, *, context, timeout):
        feature_id = context["feature_id"]
        attempt = self._attempts.get(feature_id, 0)
        self._attempts[feature_id] = attempt + 1
        self.calls.append(
            {
                "agent_type": agent_type,
                "task": task,
                "context": context,
                "timeout": timeout,
            }
        )
        if self.behavior is not None:
            result = self.behavior(feature_id, attempt)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        return {"success": True, "duration": 5, "output": f"done:{feature_id}"}


class FakeWorkerPool:
    """コラボレーターのテスト用Workerプール"""

    def __init__(self, workers: list[Worker], behavior=None) -> None:
        self.workers = list(workers)
        self.handles = {w.id: FakeWorkerHandle(w.id, behavior) for w in self.workers}

    async def get_available_workers(self) -> list[Worker]:
        return list(self.workers)

    async def get_worker(self, worker_id: str) -> FakeWorkerHandle | None:
        return self.handles.get(worker_id)

    @property
    def all_calls(self) -> list[dict[str, Any]]:
        return [call for handle in self.handles.values() for call in handle.calls]


@pytest.fixture(autouse=True)
def reset_settings_singleton():
    """テストごとに設定シングルトンをリセット"""
    import swarmforge.core.config as config_module

    config_module._settings = None
    yield
    config_module._settings = None


@pytest.fixture
def planner_config():
    """ジッターなしのプランナー設定"""
    return PlannerConfig(jitter=0)


@pytest.fixture
def fast_config():
    """待機なし・再配分なしの分散実行設定"""
    return DistributionConfig(
        max_retries=3,
        retry_delay=0,
        auto_optimize=False,
        auto_save=False,
        backpressure_poll_interval=1,
    )


@pytest.fixture
def workers():
    """制約のない2台のWorker"""
    return [Worker(id="W1"), Worker(id="W2")]


@pytest.fixture
def backend_worker():
    """backend 専用のWorker"""
    return Worker(
        id="WB",
        capabilities=WorkerCapabilities(memory=1024, cpu=2, agents=["backend"]),
    )


@pytest.fixture
def make_pool():
    """FakeWorkerPool のファクトリー"""
    return FakeWorkerPool
