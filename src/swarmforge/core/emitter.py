"""同期イベントエミッター

コンポーネントの発生事象（バッチ開始、Feature完了など）を
登録済みのオブザーバーへ呼び出し元の制御フロー内で同期配信する。
永続的なメッセージログは持たない。
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

# オブザーバーの型
EventHandler = Callable[[Any], None]


class EventEmitter:
    """名前付きイベントのオブザーバーリスト

    ハンドラーのエラーは他のハンドラーや発行元に影響しない。
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}

    def on(self, event: str, handler: EventHandler) -> None:
        """イベントハンドラーを登録"""
        self._handlers.setdefault(str(event), []).append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        """イベントハンドラーを解除"""
        handlers = self._handlers.get(str(event))
        if handlers:
            self._handlers[str(event)] = [h for h in handlers if h is not handler]

    def emit(self, event: str, payload: Any = None) -> bool:
        """イベントを発行

        Returns:
            ハンドラーが1つ以上登録されていたか
        """
        handlers = list(self._handlers.get(str(event), ()))
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("イベントハンドラーエラー: event=%s", event)
        return bool(handlers)

    def listener_count(self, event: str) -> int:
        """登録ハンドラー数"""
        return len(self._handlers.get(str(event), ()))

    def remove_all_listeners(self, event: str | None = None) -> None:
        """ハンドラーを全て解除"""
        if event is None:
            self._handlers.clear()
        else:
            self._handlers.pop(str(event), None)
