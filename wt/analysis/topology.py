"""
Sparse edge selection and connected-component clustering over a
correlation matrix.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from wt.analysis.types import ClusterResult, Edge


def select_edges(
    ids: Sequence[str],
    corr_matrix: np.ndarray,
    max_per_node: int = 2,
    min_corr: float = 0.0,
    max_edges: int = 80,
) -> list[Edge]:
    """
    Keep each node's strongest partners above `min_corr` and merge them.

    Parameters
    ----------
    ids
        Access point ids, aligned with the matrix rows/columns.
    corr_matrix
        Symmetric correlation matrix.
    max_per_node
        Partners retained per node before merging.
    min_corr
        Strict lower bound on correlation.
    max_edges
        Global cap applied after merging.

    Returns
    -------
    list[Edge]
        Deduplicated undirected edges, strongest first.
    """
    n = len(ids)
    by_key: dict[tuple[str, str], Edge] = {}

    for i in range(n):
        candidates = [
            (float(corr_matrix[i][j]), j)
            for j in range(n)
            if j != i and corr_matrix[i][j] > min_corr
        ]
        # descending correlation, lower index first on ties
        candidates.sort(key=lambda c: (-c[0], c[1]))

        for corr, j in candidates[:max_per_node]:
            edge = Edge.between(ids[i], ids[j], corr)
            existing = by_key.get(edge.key)
            if existing is None or corr > existing.corr:
                by_key[edge.key] = edge

    edges = sorted(by_key.values(), key=lambda e: (-e.corr, e.a, e.b))
    return edges[:max_edges]


def detect_clusters(ids: Sequence[str], edges: Sequence[Edge], min_corr: float) -> ClusterResult:
    """
    Label connected components of the edge graph.

    Edges weaker than `min_corr` are ignored. Components of a single node get
    cluster id 0; larger ones get sequential ids from 1 in the order their
    first member appears in `ids`.
    """
    graph: dict[str, set[str]] = {ap_id: set() for ap_id in ids}
    for edge in edges:
        if edge.corr < min_corr:
            continue
        if edge.a in graph and edge.b in graph:
            graph[edge.a].add(edge.b)
            graph[edge.b].add(edge.a)

    result = ClusterResult(
        cluster_by_id={ap_id: 0 for ap_id in ids},
        cluster_size_by_id={ap_id: 1 for ap_id in ids},
    )
    visited: set[str] = set()
    next_id = 1

    for root in ids:
        if root in visited:
            continue
        visited.add(root)
        stack = [root]
        members: list[str] = []
        while stack:
            node = stack.pop()
            members.append(node)
            for neighbor in sorted(graph[node]):
                if neighbor not in visited:
                    visited.add(neighbor)
                    stack.append(neighbor)

        if len(members) > 1:
            for member in members:
                result.cluster_by_id[member] = next_id
                result.cluster_size_by_id[member] = len(members)
            result.summary.append(len(members))
            next_id += 1

    result.summary.sort(reverse=True)
    return result
