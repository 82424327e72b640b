"""設定管理モジュールのテスト"""

from pathlib import Path

from swarmforge.core.config import (
    SwarmForgeSettings,
    find_config_file,
    get_settings,
    reload_settings,
)
from swarmforge.core.models import Priority


class TestSwarmForgeSettings:
    """SwarmForgeSettingsのテスト"""

    def test_default_values(self):
        """デフォルト値が正しく設定される"""
        # Arrange & Act
        settings = SwarmForgeSettings()

        # Assert
        assert settings.distribution.max_retries == 3
        assert settings.distribution.retry_delay == 5000
        assert settings.distribution.backpressure_threshold == 0.8
        assert settings.distribution.auto_optimize is True
        assert settings.planner.max_concurrent_per_worker == 1
        assert settings.planner.priority_weights[Priority.CRITICAL] == 1000
        assert settings.planner.priority_multipliers[Priority.LOW] == 0.8
        assert settings.planner.resource_estimates["backend"].time == 300000
        assert settings.logging.level == "INFO"

    def test_from_yaml_with_valid_file(self, tmp_path):
        """有効なYAMLファイルから設定を読み込む"""
        # Arrange
        config_file = tmp_path / "swarmforge.config.yaml"
        config_file.write_text("""
distribution:
  max_retries: 5
  retry_delay: 100
  progress_path: ./progress.json
planner:
  max_concurrent_per_worker: 2
  resource_estimates:
    backend:
      time: 1000
      memory: 256
logging:
  level: DEBUG
""")

        # Act
        settings = SwarmForgeSettings.from_yaml(config_file)

        # Assert
        assert settings.distribution.max_retries == 5
        assert settings.distribution.retry_delay == 100
        assert settings.distribution.progress_path == "./progress.json"
        assert settings.planner.max_concurrent_per_worker == 2
        assert settings.planner.resource_estimates["backend"].time == 1000
        assert settings.logging.level == "DEBUG"

    def test_from_yaml_with_nonexistent_file(self):
        """存在しないファイルパスを指定した場合はデフォルト値"""
        settings = SwarmForgeSettings.from_yaml(Path("/nonexistent/config.yaml"))

        assert settings.distribution.max_retries == 3

    def test_from_yaml_finds_default_config_file(self, tmp_path, monkeypatch):
        """カレントディレクトリの swarmforge.config.yml を探索する"""
        # Arrange
        (tmp_path / "swarmforge.config.yml").write_text("distribution:\n  max_retries: 9\n")
        monkeypatch.chdir(tmp_path)

        # Act
        settings = SwarmForgeSettings.from_yaml()

        # Assert
        assert settings.distribution.max_retries == 9

    def test_environment_variables(self, tmp_path, monkeypatch):
        """設定ファイルがなければ環境変数から読み込む"""
        # Arrange
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.setenv("SWARMFORGE_DISTRIBUTION__MAX_RETRIES", "7")
        monkeypatch.setenv("SWARMFORGE_LOGGING__LEVEL", "WARNING")

        # Act
        settings = SwarmForgeSettings.from_yaml()

        # Assert
        assert settings.distribution.max_retries == 7
        assert settings.logging.level == "WARNING"

    def test_file_values_take_precedence_over_environment(self, tmp_path, monkeypatch):
        """ファイルにある項目はファイル優先、ない項目は環境変数で補う"""
        # Arrange
        config_file = tmp_path / "swarmforge.config.yaml"
        config_file.write_text("distribution:\n  max_retries: 5\n")
        monkeypatch.setenv("SWARMFORGE_DISTRIBUTION__MAX_RETRIES", "7")
        monkeypatch.setenv("SWARMFORGE_LOGGING__LEVEL", "ERROR")

        # Act
        settings = SwarmForgeSettings.from_yaml(config_file)

        # Assert
        assert settings.distribution.max_retries == 5
        assert settings.logging.level == "ERROR"

    def test_find_config_file(self, tmp_path, monkeypatch):
        """設定ファイルがなければ None"""
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("HOME", str(tmp_path))

        assert find_config_file() is None

        (tmp_path / "swarmforge.config.yaml").write_text("{}\n")
        assert find_config_file() == tmp_path / "swarmforge.config.yaml"

    def test_get_settings_returns_singleton(self, tmp_path, monkeypatch):
        """get_settings は同じインスタンスを返す"""
        monkeypatch.chdir(tmp_path)

        assert get_settings() is get_settings()

    def test_reload_settings_updates_singleton(self, tmp_path, monkeypatch):
        """reload_settings はシングルトンを更新する"""
        # Arrange
        config_file = tmp_path / "custom.yaml"
        config_file.write_text("distribution:\n  sequential: true\n")
        monkeypatch.chdir(tmp_path)

        # Act
        settings = reload_settings(config_file)

        # Assert
        assert settings.distribution.sequential is True
        assert get_settings().distribution.sequential is True
