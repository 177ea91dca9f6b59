"""
Human Design Agent: Calculation Filter.

Inputs birth data; outputs a Human Design chart (type, strategy, authority,
profile, centers, gates, channels, incarnation cross) plus an interpretation
prompt as the seed for downstream stages.

Planetary positions come from an injectable ephemeris. The default returns
fixed reference longitudes: this is an illustrative calculator, not real
ephemeris math.
"""

from collections.abc import Callable, Sequence
from typing import Any

from pydantic import BaseModel, Field

from agents.base import BaseAgent
from core.frameworks import (
    CENTER_GATES,
    CHANNELS,
    DEGREES_PER_GATE,
    GENE_KEYS,
    HUMAN_DESIGN,
    I_CHING,
    LINES_PER_GATE,
)
from core.schema import AgentRequest, AgentResponse, BirthData


class PlanetPosition(BaseModel):
    planet: str
    longitude: float = Field(..., ge=0.0, lt=360.0)


class GateActivation(BaseModel):
    gate: int
    line: int
    planet: str
    design: bool


class HumanDesignChart(BaseModel):
    """Calculated chart (the agent's calculation payload)."""

    type: str
    strategy: str
    authority: str
    profile: str
    defined_centers: list[str]
    undefined_centers: list[str]
    gates: list[GateActivation]
    channels: list[str] = Field(default_factory=list)
    incarnation_cross: str


Ephemeris = Callable[[BirthData], Sequence[PlanetPosition]]

# Personality bodies first (Sun, Earth, ...); the remainder are design bodies.
PERSONALITY_BODIES = 5

REFERENCE_POSITIONS: tuple[tuple[str, float], ...] = (
    ("Sun", 120.5),
    ("Earth", 300.5),
    ("Moon", 45.2),
    ("Mercury", 110.8),
    ("Venus", 95.3),
    ("Mars", 200.7),
    ("Jupiter", 150.4),
    ("Saturn", 275.9),
    ("Uranus", 330.1),
    ("Neptune", 60.6),
    ("Pluto", 180.2),
)


def reference_ephemeris(birth_data: BirthData) -> list[PlanetPosition]:
    """Fixed reference positions; ignores birth data."""
    return [PlanetPosition(planet=p, longitude=lon) for p, lon in REFERENCE_POSITIONS]


def longitude_to_gate(longitude: float) -> tuple[int, int]:
    """Convert an ecliptic longitude to (gate, line).

    64 gates span 360 degrees (5.625 degrees each), 6 lines per gate.
    """
    lon = longitude % 360
    gate = int(lon // DEGREES_PER_GATE) + 1
    line = int(((lon % DEGREES_PER_GATE) / DEGREES_PER_GATE) * LINES_PER_GATE) + 1
    return gate, min(line, LINES_PER_GATE)


def determine_centers(gates: Sequence[int]) -> tuple[list[str], list[str]]:
    """Split centers into (defined, undefined); a center is defined when any of its gates is active."""
    active = set(gates)
    defined = [center for center, members in CENTER_GATES.items() if members & active]
    undefined = [center for center in CENTER_GATES if center not in defined]
    return defined, undefined


def determine_channels(gates: Sequence[int]) -> list[str]:
    active = set(gates)
    return [f"{a}-{b}" for a, b in CHANNELS if a in active and b in active]


def determine_type(defined_centers: Sequence[str]) -> tuple[str, str, str]:
    """Return (type, strategy, authority) from defined centers."""
    centers = set(defined_centers)
    has_sacral = "Sacral" in centers
    has_throat = "Throat" in centers
    emotional = "Solar Plexus" in centers

    if not centers:
        return "Reflector", "Wait 28 days (lunar cycle)", "Lunar Authority"
    if has_sacral and has_throat:
        return (
            "Manifesting Generator",
            "Respond & Inform",
            "Emotional Authority" if emotional else "Sacral Authority",
        )
    if has_sacral:
        return (
            "Generator",
            "Wait to Respond",
            "Emotional Authority" if emotional else "Sacral Authority",
        )
    if has_throat and ("Heart/Ego" in centers or "G Center" in centers):
        return (
            "Manifestor",
            "Inform before acting",
            "Emotional Authority" if emotional else "Splenic Authority",
        )
    if emotional:
        authority = "Emotional Authority"
    elif "Spleen" in centers:
        authority = "Splenic Authority"
    else:
        authority = "Self-Projected Authority"
    return "Projector", "Wait for Invitation", authority


class HumanDesignAgent(BaseAgent):
    """
    Calculation filter: birth data -> HumanDesignChart.

    Deterministic; its cache fingerprint depends on birth data only, so the
    chart is computed once per person for the lifetime of a stable-profile
    cache entry.

    Gene Keys and I Ching readings start from the same activations (gate N is
    Gene Key N and hexagram N), so this agent serves those frameworks too.
    """

    frameworks = (HUMAN_DESIGN, GENE_KEYS, I_CHING)
    description = "Calculates a Human Design chart from birth data."
    context_fields = frozenset({"birth_data"})

    def __init__(self, ephemeris: Ephemeris = reference_ephemeris) -> None:
        self._ephemeris = ephemeris

    def calculate(self, birth_data: BirthData) -> HumanDesignChart:
        planets = list(self._ephemeris(birth_data))
        if len(planets) <= PERSONALITY_BODIES:
            raise ValueError(
                f"ephemeris returned {len(planets)} bodies; need more than {PERSONALITY_BODIES}"
            )
        gates = [
            GateActivation(
                gate=gate,
                line=line,
                planet=p.planet,
                design=index >= PERSONALITY_BODIES,
            )
            for index, p in enumerate(planets)
            for gate, line in [longitude_to_gate(p.longitude)]
        ]
        gate_numbers = [g.gate for g in gates]
        defined, undefined = determine_centers(gate_numbers)
        hd_type, strategy, authority = determine_type(defined)
        sun, earth = gates[0], gates[1]
        return HumanDesignChart(
            type=hd_type,
            strategy=strategy,
            authority=authority,
            profile=f"{sun.line}/{earth.line}",
            defined_centers=defined,
            undefined_centers=undefined,
            gates=gates,
            channels=determine_channels(gate_numbers),
            incarnation_cross=f"Right Angle Cross of {sun.gate}/{earth.gate}",
        )

    async def execute(self, request: AgentRequest) -> AgentResponse:
        """
        Calculate the chart for request.context.birth_data.

        Raises:
            ValueError: Birth data is missing.
        """
        birth_data = request.context.birth_data
        if birth_data is None:
            raise ValueError("Birth data required for Human Design calculation")

        chart = self.calculate(birth_data)
        sun = chart.gates[0]
        correlations = [
            f"Gate {sun.gate} → I Ching Hexagram {sun.gate}",
            f"Gate {sun.gate} → Gene Key {sun.gate}",
            *(f"{center} Center → Chakra correlation" for center in chart.defined_centers),
        ]
        return AgentResponse(
            calculation=chart.model_dump(),
            correlations=correlations,
            interpretation_seed=self.interpretation_prompt(chart),
            method="deterministic",
            confidence=0.95,
            visualization_data=self._bodygraph(chart),
        )

    @staticmethod
    def _bodygraph(chart: HumanDesignChart) -> dict[str, Any]:
        return {
            "centers": {c: c in chart.defined_centers for c in CENTER_GATES},
            "channels": chart.channels,
        }

    @staticmethod
    def interpretation_prompt(chart: HumanDesignChart) -> str:
        """Chart-only prompt; the query and health data join downstream."""
        key_gates = ", ".join(f"{g.gate}.{g.line}" for g in chart.gates[:3])
        lines = [
            "You are a Human Design expert providing personalized, somatic insights.",
            "",
            "## User's Chart",
            f"- Type: {chart.type}",
            f"- Strategy: {chart.strategy}",
            f"- Authority: {chart.authority}",
            f"- Profile: {chart.profile}",
            f"- Defined Centers: {', '.join(chart.defined_centers) or 'none'}",
            f"- Undefined Centers: {', '.join(chart.undefined_centers) or 'none'}",
            f"- Channels: {', '.join(chart.channels) or 'none'}",
            f"- Key Gates: {key_gates}",
            f"- Incarnation Cross: {chart.incarnation_cross}",
            "",
            "## Instructions",
            f"1. Explain their {chart.type} nature with empathy and somatic grounding",
            "2. Connect undefined centers to where they may absorb energy from others",
            "3. Relate strategy to practical daily scenarios",
            "4. If health data present, correlate with centers (e.g., undefined Root = rest needs)",
            "5. End with one actionable somatic practice aligned with their design",
        ]
        return "\n".join(lines)

    def get_prompt_template(self) -> str:
        sample = HumanDesignChart(
            type="Generator",
            strategy="Wait to Respond",
            authority="Sacral Authority",
            profile="3/5",
            defined_centers=["Sacral", "Throat"],
            undefined_centers=["Root", "Solar Plexus"],
            gates=[],
            incarnation_cross="Sample Cross",
        )
        return self.interpretation_prompt(sample)
