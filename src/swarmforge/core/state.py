"""分散実行の状態機械

Work Distributor のフェーズ遷移を管理する。
"""

from __future__ import annotations

from enum import StrEnum


class TransitionError(Exception):
    """不正な状態遷移"""

    pass


class DistributionPhase(StrEnum):
    """分散実行フェーズ"""

    IDLE = "idle"
    ANALYZING_DEPENDENCIES = "analyzing-dependencies"
    GENERATING_BATCHES = "generating-batches"
    PLANNING_EXECUTION = "planning-execution"
    EXECUTING = "executing"
    COMPLETE = "distribution-complete"
    FAILED = "distribution-failed"


TERMINAL_PHASES = frozenset({DistributionPhase.COMPLETE, DistributionPhase.FAILED})

_RUN_START = (DistributionPhase.IDLE, *TERMINAL_PHASES)
_ACTIVE = (
    DistributionPhase.ANALYZING_DEPENDENCIES,
    DistributionPhase.GENERATING_BATCHES,
    DistributionPhase.PLANNING_EXECUTION,
    DistributionPhase.EXECUTING,
)


class DistributionStateMachine:
    """分散実行フェーズの状態機械

    状態遷移:
    - IDLE / COMPLETE / FAILED -> ANALYZING_DEPENDENCIES (Run開始)
    - ANALYZING_DEPENDENCIES -> GENERATING_BATCHES
    - GENERATING_BATCHES -> PLANNING_EXECUTION
    - PLANNING_EXECUTION -> EXECUTING
    - EXECUTING -> COMPLETE
    - 実行中の任意のフェーズ -> FAILED
    - 実行中の任意のフェーズ -> IDLE (stop による中断)
    """

    def __init__(self) -> None:
        self.current_state = DistributionPhase.IDLE
        self._transitions: dict[DistributionPhase, set[DistributionPhase]] = {
            DistributionPhase.ANALYZING_DEPENDENCIES: {
                DistributionPhase.GENERATING_BATCHES,
            },
            DistributionPhase.GENERATING_BATCHES: {DistributionPhase.PLANNING_EXECUTION},
            DistributionPhase.PLANNING_EXECUTION: {DistributionPhase.EXECUTING},
            DistributionPhase.EXECUTING: {DistributionPhase.COMPLETE},
        }
        for phase in _RUN_START:
            self._transitions[phase] = {DistributionPhase.ANALYZING_DEPENDENCIES}
        for phase in _ACTIVE:
            self._transitions[phase] |= {DistributionPhase.FAILED, DistributionPhase.IDLE}

    @property
    def is_active(self) -> bool:
        """Runが進行中のフェーズか"""
        return self.current_state in _ACTIVE

    def can_transition(self, to_state: DistributionPhase) -> bool:
        """指定フェーズへ遷移可能か確認"""
        return to_state in self._transitions.get(self.current_state, set())

    def transition(self, to_state: DistributionPhase) -> DistributionPhase:
        """フェーズ遷移

        Raises:
            TransitionError: 不正な遷移の場合
        """
        if not self.can_transition(to_state):
            valid = sorted(self._transitions.get(self.current_state, set()))
            raise TransitionError(
                f"Invalid transition: {self.current_state} -> {to_state}. Valid: {valid}"
            )
        self.current_state = to_state
        return self.current_state
