"""SQLModel database models for sharegraph."""

from sharegraph.models.shares import GroupOverride, ShareEdge, ShareEdgeBase, unique_edge_index

__all__ = [
    "GroupOverride",
    "ShareEdge",
    "ShareEdgeBase",
    "unique_edge_index",
]
