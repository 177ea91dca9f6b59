"""
Cross-Mapper Agent: Correspondence Filter.

Inputs upstream calculator results; outputs cross-framework correspondences
(gate -> I Ching hexagram and Gene Key, center -> chakra, journal theme ->
hexagram, health metric -> center). Purely deterministic.
"""

from collections.abc import Mapping
from typing import Any

from agents.base import BaseAgent
from core.frameworks import (
    CENTER_CHAKRAS,
    CROSS_MAPPER,
    HEXAGRAM_NAMES,
    METRIC_CENTERS,
    hexagram_name,
)
from core.schema import AgentRequest, AgentResponse


def _chart_payloads(upstream: Mapping[str, AgentResponse]) -> list[dict[str, Any]]:
    """Upstream calculations shaped like a Human Design chart."""
    return [
        resp.calculation
        for resp in upstream.values()
        if isinstance(resp.calculation, dict)
        and "gates" in resp.calculation
        and "defined_centers" in resp.calculation
    ]


class CrossMapperAgent(BaseAgent):
    """
    Correspondence filter: upstream charts -> cross-framework linkages.

    Correlations keep discovery order: upstream correlations first (in
    upstream key order), then gates, centers, journal themes and metrics.
    """

    frameworks = (CROSS_MAPPER,)
    description = "Maps calculator results across I Ching, Gene Keys and chakras."
    context_fields = frozenset({"upstream", "journal_themes", "health_metrics"})

    async def execute(self, request: AgentRequest) -> AgentResponse:
        upstream = self.require_upstream(request)
        context = request.context
        charts = _chart_payloads(upstream)

        gates: list[int] = []
        defined: list[str] = []
        for chart in charts:
            for activation in chart.get("gates", []):
                gate = int(activation["gate"])
                if gate not in gates:
                    gates.append(gate)
            for center in chart.get("defined_centers", []):
                if center not in defined:
                    defined.append(center)

        hexagrams = [
            {"gate": gate, "hexagram": hexagram_name(gate), "gene_key": gate} for gate in gates
        ]
        chakras = {center: CENTER_CHAKRAS[center] for center in defined if center in CENTER_CHAKRAS}

        found: list[str] = []
        for item in hexagrams:
            found.append(
                f"Gate {item['gate']} → I Ching Hexagram {item['gate']} ({item['hexagram']})"
            )
            found.append(f"Gate {item['gate']} → Gene Key {item['gene_key']}")
        for center, chakra in chakras.items():
            found.append(f"{center} Center → {chakra} Chakra")

        themes = self._map_themes(context.journal_themes or [])
        for theme, number in themes:
            found.append(f"Journal theme '{theme}' ↔ Hexagram {number} ({hexagram_name(number)})")

        metrics = self._map_metrics(context.health_metrics or {}, defined)
        for key, center, state in metrics:
            found.append(f"Health metric '{key}' → {center} Center ({state})")

        correlations = self.merge_correlations(
            *(resp.correlations for resp in upstream.values()), found
        )
        confidences = [r.confidence for r in upstream.values() if r.confidence is not None]
        return AgentResponse(
            calculation={
                "hexagrams": hexagrams,
                "chakras": chakras,
                "themes": [{"theme": t, "hexagram": n} for t, n in themes],
                "metrics": [{"metric": k, "center": c, "state": s} for k, c, s in metrics],
            },
            correlations=correlations,
            interpretation_seed=self._seed(found, list(upstream)),
            method="deterministic",
            confidence=round(sum(confidences) / len(confidences), 4) if confidences else None,
        )

    @staticmethod
    def _map_themes(themes: list[str]) -> list[tuple[str, int]]:
        """Match journal themes to hexagrams whose names share a word."""
        mapped: list[tuple[str, int]] = []
        for theme in themes:
            words = {w for w in theme.lower().split() if len(w) > 3}
            for number, name in enumerate(HEXAGRAM_NAMES, start=1):
                if words & {w for w in name.lower().split()}:
                    mapped.append((theme, number))
                    break
        return mapped

    @staticmethod
    def _map_metrics(
        metrics: Mapping[str, Any], defined: list[str]
    ) -> list[tuple[str, str, str]]:
        mapped: list[tuple[str, str, str]] = []
        for key in metrics:
            center = METRIC_CENTERS.get(key.lower())
            if center is None:
                continue
            mapped.append((key, center, "defined" if center in defined else "undefined"))
        return mapped

    @staticmethod
    def _seed(found: list[str], sources: list[str]) -> str:
        lines = [f"## Cross-framework correspondences (from {', '.join(sources)})"]
        if found:
            lines += [f"- {item}" for item in found]
        else:
            lines.append("- No direct correspondences between the supplied results.")
        return "\n".join(lines)
