"""
Ordered fallback strategies.

Gate relaxation, hero/back selection and group building all follow the same
shape: try the strictest strategy first and move down the list until one of
them produces something.
"""
import logging
from typing import Any, Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


def is_empty(result: Any) -> bool:
    if result is None:
        return True
    try:
        return len(result) == 0
    except TypeError:
        return False


class FallbackChain:
    """Evaluate strategies in order until one returns a non-empty result."""

    def __init__(self, name: str):
        self.name = name
        self._steps: List[Tuple[str, Callable[[], Any]]] = []

    def add(self, label: str, strategy: Callable[[], Any]) -> "FallbackChain":
        self._steps.append((label, strategy))
        return self

    @property
    def labels(self) -> List[str]:
        return [label for label, _ in self._steps]

    def run(self, default: Any = None) -> Tuple[Optional[str], Any]:
        """
        Run the chain.

        Args:
            default: Value returned when every strategy comes back empty

        Returns:
            Tuple of (label of the strategy that produced the result or None, result)
        """
        for label, strategy in self._steps:
            result = strategy()
            if not is_empty(result):
                logger.debug(f"{self.name}: resolved by '{label}'")
                return label, result
            logger.debug(f"{self.name}: '{label}' produced nothing")
        return None, default
