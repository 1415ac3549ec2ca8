"""
Graph — decision graphs over nodnod.

    from paysettle import graph as G

    @G.node
    class LoadOrderNode:
        @classmethod
        async def __compose__(cls, spec_node: SpecNode) -> "LoadOrderNode":
            ...

    settle = G.graph(FinalOutcomeNode)
    final = await settle(spec)
"""

from nodnod import scalar_node as node

from paysettle.graph._run import (
    Compiled,
    graph,
)

__all__ = (
    "node",
    "Compiled",
    "graph",
)
