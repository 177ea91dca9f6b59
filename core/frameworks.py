"""
Framework catalogue: canonical identifiers, lookup tables and prompt guidelines.

This module is the single source of truth for framework names and the
static correspondences agents draw on (gate -> center, gate -> hexagram,
center -> chakra). It depends on nothing but core.schema.
"""

from __future__ import annotations

from types import MappingProxyType

from core.schema import TTLClass

# ---------------------------------------------------------------------------
# 1. Framework identifiers
# ---------------------------------------------------------------------------

HUMAN_DESIGN = "human-design"
GENE_KEYS = "gene-keys"
I_CHING = "i-ching"
CROSS_MAPPER = "cross-mapper"
INTERPRETER = "interpreter"
SYNTHESIZER = "synthesizer"
ORACLE = "oracle"

DEFAULT_TTL_CLASSES = MappingProxyType(
    {
        HUMAN_DESIGN: TTLClass.STABLE_PROFILE,
        GENE_KEYS: TTLClass.STABLE_PROFILE,
        I_CHING: TTLClass.STABLE_PROFILE,
        CROSS_MAPPER: TTLClass.STABLE_PROFILE,
        INTERPRETER: TTLClass.DAILY,
        SYNTHESIZER: TTLClass.DAILY,
        ORACLE: TTLClass.NO_CACHE,
    }
)

# ---------------------------------------------------------------------------
# 2. Human Design tables
# ---------------------------------------------------------------------------

GATE_COUNT = 64
LINES_PER_GATE = 6
DEGREES_PER_GATE = 360 / GATE_COUNT

# Order matters: defined/undefined centers are reported in this order.
CENTER_GATES: dict[str, frozenset[int]] = {
    "Head": frozenset({61, 63, 64}),
    "Ajna": frozenset({47, 24, 4, 17, 43, 11}),
    "Throat": frozenset({62, 23, 56, 35, 12, 45, 33, 8, 31, 20, 16}),
    "G Center": frozenset({1, 2, 7, 10, 13, 15, 25, 46}),
    "Sacral": frozenset({5, 14, 29, 59, 9, 3, 42, 27, 34}),
    "Solar Plexus": frozenset({6, 37, 22, 36, 30, 55, 49}),
    "Spleen": frozenset({48, 57, 44, 50, 32, 28, 18}),
    "Heart/Ego": frozenset({21, 40, 26, 51}),
    "Root": frozenset({52, 53, 54, 38, 39, 41, 19, 58, 60}),
}

CHANNELS: tuple[tuple[int, int], ...] = (
    (1, 8), (2, 14), (3, 60), (4, 63), (5, 15), (6, 59),
    (7, 31), (9, 52), (10, 20), (10, 34), (10, 57), (11, 56),
    (12, 22), (13, 33), (16, 48), (17, 62), (18, 58), (19, 49),
    (20, 34), (20, 57), (21, 45), (23, 43), (24, 61), (25, 51),
    (26, 44), (27, 50), (28, 38), (29, 46), (30, 41), (32, 54),
    (34, 57), (35, 36), (37, 40), (39, 55), (42, 53), (47, 64),
)  # fmt: skip

# ---------------------------------------------------------------------------
# 3. Cross-framework correspondences
# ---------------------------------------------------------------------------

HEXAGRAM_NAMES: tuple[str, ...] = (
    "The Creative", "The Receptive", "Difficulty at the Beginning", "Youthful Folly",
    "Waiting", "Conflict", "The Army", "Holding Together",
    "Small Taming", "Treading", "Peace", "Standstill",
    "Fellowship", "Possession in Great Measure", "Modesty", "Enthusiasm",
    "Following", "Work on the Decayed", "Approach", "Contemplation",
    "Biting Through", "Grace", "Splitting Apart", "Return",
    "Innocence", "Great Taming", "Nourishment", "Preponderance of the Great",
    "The Abysmal", "The Clinging", "Influence", "Duration",
    "Retreat", "Great Power", "Progress", "Darkening of the Light",
    "The Family", "Opposition", "Obstruction", "Deliverance",
    "Decrease", "Increase", "Breakthrough", "Coming to Meet",
    "Gathering Together", "Pushing Upward", "Oppression", "The Well",
    "Revolution", "The Cauldron", "The Arousing", "Keeping Still",
    "Development", "The Marrying Maiden", "Abundance", "The Wanderer",
    "The Gentle", "The Joyous", "Dispersion", "Limitation",
    "Inner Truth", "Small Preponderance", "After Completion", "Before Completion",
)  # fmt: skip

CENTER_CHAKRAS: dict[str, str] = {
    "Head": "Crown",
    "Ajna": "Third Eye",
    "Throat": "Throat",
    "G Center": "Heart",
    "Heart/Ego": "Heart",
    "Solar Plexus": "Solar Plexus",
    "Spleen": "Solar Plexus",
    "Sacral": "Sacral",
    "Root": "Root",
}

# Health metric keys that speak to a center's theme.
METRIC_CENTERS: dict[str, str] = {
    "sleep": "Root",
    "stress": "Root",
    "hrv": "Spleen",
    "energy": "Sacral",
    "steps": "Sacral",
    "mood": "Solar Plexus",
}


def hexagram_name(gate: int) -> str:
    """Return the I Ching hexagram name sharing the gate's number."""
    if not 1 <= gate <= GATE_COUNT:
        raise ValueError(f"gate must be within 1..{GATE_COUNT}, got {gate}")
    return HEXAGRAM_NAMES[gate - 1]


# ---------------------------------------------------------------------------
# 4. Interpretation guidelines (system instruction for generation agents)
# ---------------------------------------------------------------------------

INTERPRETATION_GUIDELINES = """
You interpret results produced by esoteric framework calculators for one person.
- Speak with empathy and somatic grounding; use trauma-informed language.
- Balance light and shadow aspects; never predict outcomes as certainties.
- Relate insights to practical daily scenarios.
- When health data is present, relate it to the framework's centers or themes.
- End with one actionable, embodied practice.
"""

ORACLE_GUIDELINES = (
    INTERPRETATION_GUIDELINES.strip()
    + "\n- Answer the user's question directly, drawing only on the supplied context."
    + "\n- Keep the response conversational and empowering."
)
