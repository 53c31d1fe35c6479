"""
Knowledge graph operations for ClawScope

Facts (subject, predicate, object) become directed edges between entity nodes.
"""

import logging
from collections import Counter
from typing import Any, Dict, Iterable, List

import networkx as nx

from .models import Fact

logger = logging.getLogger("clawscope.graph")


class FactGraph:
    """NetworkX view over a set of facts"""

    def __init__(self, facts: Iterable[Fact], min_confidence: float = 0.0):
        self.graph = nx.MultiDiGraph()
        self.min_confidence = min_confidence
        self._build_graph(facts)

    def _build_graph(self, facts: Iterable[Fact]):
        for fact in facts:
            if fact.confidence < self.min_confidence:
                continue
            for entity in (fact.subject, fact.object):
                if not self.graph.has_node(entity):
                    self.graph.add_node(entity, label=entity)
            self.graph.add_edge(
                fact.subject,
                fact.object,
                predicate=fact.predicate,
                confidence=fact.confidence,
            )

    def to_json(self) -> Dict[str, List[Dict[str, Any]]]:
        """Export as {nodes: [{id, label}], edges: [{from, to, label, confidence}]}"""
        nodes = [{"id": node, "label": data["label"]} for node, data in self.graph.nodes(data=True)]
        edges = [
            {
                "from": source,
                "to": target,
                "label": data["predicate"],
                "confidence": data["confidence"],
            }
            for source, target, data in self.graph.edges(data=True)
        ]
        return {"nodes": nodes, "edges": edges}

    def get_stats(self, top_n: int = 10) -> Dict[str, Any]:
        predicates = Counter(data["predicate"] for _, _, data in self.graph.edges(data=True))
        hubs = sorted(self.graph.degree(), key=lambda pair: (-pair[1], pair[0]))[:top_n]

        components = 0
        if self.graph.number_of_nodes():
            components = nx.number_weakly_connected_components(self.graph)

        return {
            "totalFacts": self.graph.number_of_edges(),
            "totalEntities": self.graph.number_of_nodes(),
            "totalPredicates": len(predicates),
            "components": components,
            "topEntities": [{"entity": node, "degree": degree} for node, degree in hubs],
            "topPredicates": [{"predicate": p, "count": c} for p, c in predicates.most_common(top_n)],
        }


def empty_stats() -> Dict[str, Any]:
    return FactGraph([]).get_stats()
