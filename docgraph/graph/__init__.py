"""
Knowledge graph construction (Stage 2) and queries for DocGraph.
"""

from .construction import ConstructionReport, GraphConstructionStage
from .query import GraphData, GraphLink, GraphNode, describe_node, fetch_graph, list_documents

__all__ = [
    "ConstructionReport",
    "GraphConstructionStage",
    "GraphData",
    "GraphLink",
    "GraphNode",
    "describe_node",
    "fetch_graph",
    "list_documents",
]
