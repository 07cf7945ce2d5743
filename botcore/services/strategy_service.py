"""
Strategy manager.

A strategy is a callable taking the bot (plus optional arguments) that wires
up hooks and listeners and returns a function undoing that wiring.
"""

from collections.abc import Callable
from typing import Any

from botcore.errors import DuplicateError, ValidationError
from botcore.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

Strategy = Callable[..., Callable[[], Any] | None]


class StrategyManager:
    def __init__(self, bot: Any):
        self.bot = bot
        self._enabled: dict[Strategy, Callable[[], Any] | None] = {}

    def use(self, strategy: Strategy, *args: Any, **kwargs: Any) -> Callable[[], None]:
        if not callable(strategy):
            raise ValidationError("strategy must be callable")
        if strategy in self._enabled:
            raise DuplicateError(f"strategy {_name(strategy)} already in use")

        self._enabled[strategy] = strategy(self.bot, *args, **kwargs)
        logger.info("Strategy enabled", strategy=_name(strategy))
        return lambda: self.disable(strategy)

    def disable(self, strategy: Strategy) -> bool:
        if strategy not in self._enabled:
            return False

        disable = self._enabled.pop(strategy)
        if callable(disable):
            disable()
        logger.info("Strategy disabled", strategy=_name(strategy))
        return True

    def list(self) -> list[Strategy]:
        return list(self._enabled)

    def clear(self) -> None:
        for strategy in list(self._enabled):
            self.disable(strategy)


def _name(strategy: Strategy) -> str:
    return getattr(strategy, "__name__", repr(strategy))
