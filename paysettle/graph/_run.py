"""
Graph runner — sugar over nodnod.

Nodes are discovered from the target, inputs are injected by runtime type.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, cast
from collections.abc import Callable, Coroutine

from nodnod import Scope, Value, EventLoopAgent, Node


def _build_agent(target: type[Any]) -> EventLoopAgent:
    all_nodes: set[type[Node[Any, Any]]] = {cast(type[Node[Any, Any]], target)}
    return EventLoopAgent.build(all_nodes)


# ═══════════════════════════════════════════════════════════════════════════════
# Compiled
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, frozen=True)
class Compiled[T]:
    """
    Pre-compiled graph, reusable across calls.

    Example:
        settle = graph(FinalOutcomeNode)
        final = await settle(spec)
    """

    _target: type[T]
    _agent: EventLoopAgent

    async def __call__(self, *inputs: object) -> T:
        scope = Scope(detail=self._target.__name__)
        async with scope:
            for value in inputs:
                scope.push(Value(type(value), value))

            run_method = cast(
                Callable[[Scope, dict[type[Any], Scope]], Coroutine[Any, Any, None]],
                getattr(self._agent, "run"),
            )
            await run_method(scope, {})

            found = scope.get(self._target)
            if found is None:
                raise KeyError(f"{self._target.__name__} was not produced by the graph")
            return cast(T, found.value)


def graph[T](target: type[T]) -> Compiled[T]:
    """Pre-compile the graph rooted at target."""
    return Compiled(_target=target, _agent=_build_agent(target))


__all__ = ("Compiled", "graph")
