"""Feature / Worker 定義ファイルの読み込み

YAML または JSON（YAMLのサブセット）のリスト、もしくは
``{features: [...]}`` / ``{workers: [...]}`` 形式に対応する。
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from .models import Worker


class DefinitionFileError(ValueError):
    """定義ファイルの形式エラー"""

    pass


def _load_list(path: Path | str, key: str) -> list[Any]:
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise DefinitionFileError(f"File not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise DefinitionFileError(f"Invalid YAML/JSON in {path}: {exc}") from exc

    if isinstance(data, dict) and key in data:
        data = data[key]
    if data is None:
        return []
    if not isinstance(data, list):
        raise DefinitionFileError(f"{path}: expected a list of {key}")
    return data


def load_features(path: Path | str) -> list[dict[str, Any]]:
    """Feature 定義を読み込む

    検証は DependencyAnalyzer.add_feature に任せるため、生の辞書を返す。
    """
    items = _load_list(path, "features")
    for i, item in enumerate(items):
        if not isinstance(item, dict):
            raise DefinitionFileError(f"{path}: features[{i}] must be a mapping")
    return items


def load_workers(path: Path | str) -> list[Worker]:
    """Worker 定義を読み込む"""
    return [Worker.model_validate(item) for item in _load_list(path, "workers")]
