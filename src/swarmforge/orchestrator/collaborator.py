"""Worker コラボレーター境界

リモートWorkerプールとその転送方式は外部に委ねる。
コアが依存するのは「エージェント種別とタスク記述を渡して実行し、
タイムアウト内で成否を返す」能力のみ。
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Annotated, Any, Protocol, runtime_checkable

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from swarmforge.core.models import Worker

logger = logging.getLogger(__name__)


def _round_duration(value: Any) -> Any:
    if isinstance(value, float):
        return round(value)
    return value


class AgentOutcome(BaseModel):
    """エージェント実行結果"""

    model_config = ConfigDict(extra="allow")

    success: bool = Field(default=True, description="実行が成功したか")
    duration: Annotated[int | None, BeforeValidator(_round_duration)] = Field(
        default=None, description="実行時間 (ms)。小数は丸める"
    )
    output: Any = Field(default=None, description="エージェントの出力")
    error: str | None = Field(default=None, description="失敗時のエラーメッセージ")

    @classmethod
    def from_result(cls, result: Any) -> AgentOutcome:
        """コラボレーターの戻り値を AgentOutcome に正規化する

        None は成功、Mapping はフィールドとして解釈し、
        それ以外は output として扱う。
        補助情報が解釈できなくても success の報告はそのまま採用する。
        """
        if isinstance(result, AgentOutcome):
            return result
        if result is None:
            return cls()
        if isinstance(result, Mapping):
            data = dict(result)
            try:
                return cls.model_validate(data)
            except ValidationError as exc:
                logger.warning("エージェント結果の補助情報を無視: %s", exc)
                error = data.get("error")
                return cls(
                    success=bool(data.get("success", True)),
                    output=data.get("output"),
                    error=str(error) if error is not None else None,
                )
        return cls(output=result)


@runtime_checkable
class WorkerHandle(Protocol):
    """タスクを実行できるWorker

    任意で ``async cancel(feature_id)`` を公開すると、
    stop() 時に協調的キャンセルが試みられる。
    timeout はミリ秒。
    """

    async def execute_agent(
        self,
        agent_type: str,
        task: str,
        *,
        context: dict[str, Any],
        timeout: int,
    ) -> Any: ...


@runtime_checkable
class WorkerPool(Protocol):
    """リモートWorkerプール"""

    async def get_available_workers(self) -> list[Worker]: ...

    async def get_worker(self, worker_id: str) -> WorkerHandle | None: ...
