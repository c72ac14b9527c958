"""Stage contract."""
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple, Type, Union

from ..cancellation import CancellationToken
from ..errors import StageInputError
from ..models import RunContext, StageResult


class Stage(ABC):
    """
    One unit of pipeline work.

    A stage reads the keys it requires from ``context.state`` and returns
    its output keys in ``StageResult.data``; the orchestrator writes them
    into the context before the next stage runs.
    """

    name: str = "stage"
    category: str = "general"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config: Dict[str, Any] = dict(config or {})

    @abstractmethod
    async def run(self, context: RunContext, cancel_token: CancellationToken) -> StageResult:
        """Execute the stage against a run context."""

    def require(
        self,
        context: RunContext,
        key: str,
        expected: Union[Type, Tuple[Type, ...]],
    ) -> Any:
        """
        Read a required key from the context and check its type.

        Raises:
            StageInputError: key missing or of the wrong type
        """
        if key not in context.state:
            raise StageInputError(key, _type_name(expected))

        value = context.state[key]
        if not isinstance(value, expected):
            raise StageInputError(key, _type_name(expected), type(value).__name__)
        return value

    def option(self, context: RunContext, key: str, default: Any = None) -> Any:
        """Per-run value from the context, else this stage's config, else ``default``."""
        value = context.state.get(key)
        if value is None:
            value = self.config.get(key, default)
        return value

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


def _type_name(expected: Union[Type, Tuple[Type, ...]]) -> str:
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__
