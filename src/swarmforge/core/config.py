"""SwarmForge 設定管理モジュール

Pydantic Settingsを使用した型安全な設定管理。
swarmforge.config.yaml と環境変数から設定を読み込む。
"""

import logging
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Priority, ResourceEstimate

logger = logging.getLogger(__name__)


def default_resource_estimates() -> dict[str, ResourceEstimate]:
    # エージェント種別ごとの保守的な静的見積もり
    return {
        "backend": ResourceEstimate(time=300000, memory=512, cpu=1),  # 5分
        "frontend": ResourceEstimate(time=240000, memory=768, cpu=1),  # 4分
        "tester": ResourceEstimate(time=180000, memory=256, cpu=1),  # 3分
        "reviewer": ResourceEstimate(time=120000, memory=256, cpu=1),  # 2分
        "fixer": ResourceEstimate(time=180000, memory=256, cpu=1),  # 3分
        "architect": ResourceEstimate(time=240000, memory=512, cpu=1),  # 4分
        "orchestrator": ResourceEstimate(time=60000, memory=128, cpu=1),  # 1分
    }


class PlannerConfig(BaseModel):
    """実行プランナー設定"""

    max_concurrent_per_worker: int = Field(
        default=1, ge=1, description="バッチ内でWorkerあたりに割り当てる最大Feature数"
    )
    resource_estimates: dict[str, ResourceEstimate] = Field(
        default_factory=default_resource_estimates,
        description="エージェント種別ごとのリソース見積もり",
    )
    default_estimate: ResourceEstimate = Field(
        default_factory=lambda: ResourceEstimate(time=300000, memory=512, cpu=1),
        description="未知のエージェント種別に使う見積もり",
    )
    priority_weights: dict[Priority, int] = Field(
        default_factory=lambda: {
            Priority.CRITICAL: 1000,
            Priority.HIGH: 100,
            Priority.MEDIUM: 10,
            Priority.LOW: 1,
        },
        description="割り当て順序の優先度重み（大きいほど先）",
    )
    priority_multipliers: dict[Priority, float] = Field(
        default_factory=lambda: {
            Priority.CRITICAL: 1.5,
            Priority.HIGH: 1.2,
            Priority.MEDIUM: 1.0,
            Priority.LOW: 0.8,
        },
        description="推定時間に掛ける優先度倍率",
    )
    jitter: float = Field(default=10.0, ge=0, description="スコアに加える乱数の上限")


class DistributionConfig(BaseModel):
    """分散実行設定"""

    max_retries: int = Field(default=3, ge=0, le=100, description="Featureごとの最大リトライ回数")
    retry_delay: int = Field(default=5000, ge=0, description="リトライ前の固定待機 (ms)")
    progress_path: str | None = Field(default=None, description="進捗スナップショットの保存先")
    auto_optimize: bool = Field(default=True, description="計画作成後に負荷再配分を行うか")
    backpressure_threshold: float = Field(
        default=0.8, gt=0, description="未完了数÷Worker数がこの値以上でバッチ開始を待機"
    )
    backpressure_poll_interval: int = Field(
        default=1000, ge=1, description="バックプレッシャー解除のポーリング間隔 (ms)"
    )
    sequential: bool = Field(default=False, description="バッチ内を1件ずつ実行するか")
    auto_save: bool = Field(default=True, description="進捗を定期保存するか")
    save_interval: int = Field(default=1000, ge=10, description="定期保存の間隔 (ms)")


class LoggingConfig(BaseModel):
    """ロギング設定"""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")


class SwarmForgeSettings(BaseSettings):
    """SwarmForge全体設定

    設定の優先順位:
    1. 環境変数
    2. swarmforge.config.yaml
    3. デフォルト値
    """

    model_config = SettingsConfigDict(
        env_prefix="SWARMFORGE_",
        env_nested_delimiter="__",
    )

    distribution: DistributionConfig = Field(default_factory=DistributionConfig)
    planner: PlannerConfig = Field(default_factory=PlannerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, config_path: Path | str | None = None) -> "SwarmForgeSettings":
        """YAMLファイルから設定を読み込む

        ファイルの値が優先され、ファイルにない項目は環境変数とデフォルト値で補う。

        Args:
            config_path: 設定ファイルパス。Noneの場合は CONFIG_SEARCH_PATHS を順に探索

        Returns:
            SwarmForgeSettings インスタンス
        """
        path = Path(config_path) if config_path else find_config_file()
        if path is None or not path.exists():
            if config_path:
                logger.warning("設定ファイルが見つからない: %s", config_path)
            return cls()

        with open(path, encoding="utf-8") as f:
            document = yaml.safe_load(f) or {}
        logger.debug("設定ファイルを読み込み: %s", path)
        return cls(**document)


def find_config_file() -> Path | None:
    """カレントディレクトリ、ホームディレクトリの順で設定ファイルを探す"""
    for candidate in CONFIG_SEARCH_PATHS:
        path = candidate()
        if path.exists():
            return path
    return None


CONFIG_SEARCH_PATHS = (
    lambda: Path.cwd() / "swarmforge.config.yaml",
    lambda: Path.cwd() / "swarmforge.config.yml",
    lambda: Path.home() / ".swarmforge" / "config.yaml",
)

_settings: SwarmForgeSettings | None = None


def get_settings() -> SwarmForgeSettings:
    """プロセス全体で共有する設定を取得（初回のみファイル探索）"""
    global _settings
    if _settings is None:
        _settings = SwarmForgeSettings.from_yaml()
    return _settings


def reload_settings(config_path: Path | str | None = None) -> SwarmForgeSettings:
    """共有設定を読み直す

    以後に生成される WorkDistributor / ExecutionPlanner が新しい値を使う。
    """
    global _settings
    _settings = SwarmForgeSettings.from_yaml(config_path)
    return _settings
