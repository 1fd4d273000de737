from __future__ import annotations

"""
Ordered fallback policies.

A fallback chain is a list of named strategies tried in order; the first one
that succeeds wins. Keeping the chain as data means the order can be read,
logged and tested without following nested try/except blocks.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Sequence, TypeVar

from .errors import GatewayError

T = TypeVar("T")


@dataclass(frozen=True)
class Strategy(Generic[T]):
    name: str
    run: Callable[[], Awaitable[T]]


def strategy_names(strategies: Sequence[Strategy]) -> List[str]:
    return [s.name for s in strategies]


async def first_success(strategies: Sequence[Strategy[T]]) -> T:
    """
    Run strategies in order and return the first result.

    Only GatewayError moves on to the next strategy; anything else is a bug and
    propagates. When every strategy fails the last error is raised.
    """
    if not strategies:
        raise ValueError("first_success needs at least one strategy")

    last_exc: GatewayError | None = None
    for i, strategy in enumerate(strategies):
        try:
            return await strategy.run()
        except GatewayError as exc:
            last_exc = exc
            if i + 1 < len(strategies):
                logging.warning(
                    "Strategy '%s' failed, falling back to '%s': %s",
                    strategy.name,
                    strategies[i + 1].name,
                    exc,
                )
            else:
                logging.error("Strategy '%s' failed: %s", strategy.name, exc)
    assert last_exc is not None
    raise last_exc
