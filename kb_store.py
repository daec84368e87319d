# kb_store.py
"""
Coating defect SOP knowledge base.

The catalog below is the single source of truth for defect codes. It is
loaded into a KBStore once at startup and shared read-only by the match
resolver and the request handlers. The `text` field of each entry is what
gets embedded for semantic search, so keep the topic keywords used by
fallback_scorer.py in there as well.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

SEVERITIES = ("Low", "Medium", "High")


@dataclass(frozen=True)
class SopEntry:
    code: str
    name: str
    severity: str
    text: str
    root_causes: Tuple[str, ...]
    corrective_actions: Tuple[str, ...]
    priority: Optional[str] = None
    legacy_name: Optional[str] = None

    def __post_init__(self):
        if self.severity not in SEVERITIES:
            raise ValueError(f"{self.code}: severity must be one of {SEVERITIES}")

    def to_dict(self) -> Dict:
        """Shape used in the `defect` field of analyze responses."""
        return {
            "code": self.code,
            "name": self.name,
            "severity": self.severity,
            "root_causes": list(self.root_causes),
            "corrective_actions": list(self.corrective_actions),
        }

    def metadata(self) -> Dict[str, str]:
        """Payload stored next to the vector in the index."""
        return {"code": self.code, "name": self.name, "severity": self.severity}


# ---------------------------------------------------------------------------
# CATALOG (declaration order matters: it breaks ties and picks the default)
# ---------------------------------------------------------------------------

SOP_CATALOG: Tuple[SopEntry, ...] = (
    SopEntry(
        code="CD001-OP",
        name="Orange Peel",
        severity="Medium",
        text=(
            "Orange peel: the cured film shows a dimpled, uneven surface texture "
            "resembling the skin of an orange. Caused by poor flow and levelling "
            "of the lacquer, usually from high viscosity, poor spray atomization, "
            "or solvent flashing off too fast before the film can level."
        ),
        root_causes=(
            "Lacquer viscosity above target range",
            "Insufficient spray atomization (low gun pressure, wrong nozzle)",
            "Solvent evaporating too fast (thinner too fast for line temperature)",
            "Spray distance too large, droplets arrive partially dry",
        ),
        corrective_actions=(
            "Measure viscosity with the flow cup and adjust to target with approved thinner",
            "Raise atomizing pressure and verify nozzle size against the data sheet",
            "Switch to a slower solvent blend if flash-off is too fast",
            "Reset spray distance and overlap, then re-check surface texture",
        ),
        priority="viscosity first",
    ),
    SopEntry(
        code="CD002-AD",
        name="Poor Adhesion",
        severity="High",
        text=(
            "Poor adhesion: the coating peels, flakes or lifts from the substrate "
            "and fails the tape or cross-hatch test. Usually a drying and curing "
            "problem (temperature too low or line speed too high), too little "
            "coating amount, wrong solvent or thinner ratio, or a bad lacquer batch. "
            "Surface contamination on the substrate can also prevent adhesion."
        ),
        root_causes=(
            "Drying regime below target (oven temperature too low or time too short)",
            "Coating amount too low, film too thin",
            "Wrong solvent type or ratio, unapproved thinner",
            "Defective lacquer batch",
        ),
        corrective_actions=(
            "Check drying regime: temperature and time (line speed). "
            "Increase temperature and/or increase drying time if below target.",
            "Check coating amount. If film is too thin, increase lacquer quantity.",
            "Verify solvent type and ratio. Check for unapproved or different thinner.",
            "If issue persists, suspect lacquer batch. Test with another batch.",
        ),
        priority="process first, material second",
        legacy_name="adhesion",
    ),
    SopEntry(
        code="CD003-PH",
        name="Pinholes",
        severity="Medium",
        text=(
            "Pinholes: tiny holes or pores through the film, often visible as "
            "pinholing across the coated area. Most often caused by lacquer "
            "viscosity out of range, or by surface contamination and oiling of "
            "the substrate; trapped solvent or air released during drying makes "
            "it worse."
        ),
        root_causes=(
            "Lacquer viscosity out of target range",
            "Surface contamination or oiling of the substrate",
        ),
        corrective_actions=(
            "Check lacquer viscosity first. Adjust to target viscosity range.",
            "Check for surface contamination or oiling of substrate.",
        ),
        priority="viscosity first",
        legacy_name="pinhole",
    ),
    SopEntry(
        code="CD004-SG",
        name="Sagging and Runs",
        severity="Medium",
        text=(
            "Sagging: the wet film sags, runs or forms curtains and drips on "
            "vertical surfaces. Caused by excessive film thickness, viscosity too "
            "low after over-thinning, or slow drying so the film keeps flowing."
        ),
        root_causes=(
            "Film thickness above specification (too many passes, heavy coat)",
            "Viscosity too low after over-thinning",
            "Drying too slow at current line temperature",
        ),
        corrective_actions=(
            "Reduce film build: fewer passes or lower flow rate",
            "Bring viscosity back to target, stop adding thinner",
            "Raise flash-off or drying temperature within the SOP window",
        ),
    ),
    SopEntry(
        code="CD005-BL",
        name="Blistering",
        severity="High",
        text=(
            "Blister formation: bubbles or swelling in the cured film, sometimes "
            "appearing days later. Caused by moisture or humidity trapped under "
            "the film, solvent retained by too fast drying of the surface skin, "
            "or contamination such as salts on the substrate."
        ),
        root_causes=(
            "Moisture on the substrate or high humidity during application",
            "Retained solvent from skin drying too fast",
            "Soluble contamination on the substrate",
        ),
        corrective_actions=(
            "Check substrate dryness and booth humidity before coating",
            "Lower initial drying temperature to let solvent escape",
            "Clean and degrease the substrate, verify with a water break test",
        ),
    ),
    SopEntry(
        code="CD006-CR",
        name="Cratering",
        severity="High",
        text=(
            "Crater defects: small round depressions in the film, also called fish "
            "eyes or cissing, where the lacquer pulls away from a spot. Caused by "
            "contamination with silicone, oil or grease on the substrate, in the "
            "compressed air, or in the lacquer itself."
        ),
        root_causes=(
            "Silicone or oil contamination on the substrate",
            "Oil or water in the compressed air supply",
            "Contaminated lacquer or mixing equipment",
        ),
        corrective_actions=(
            "Degrease the substrate and remove silicone sources from the area",
            "Drain and check the compressed air filters and oil separators",
            "Replace the lacquer from a clean container and clean mixing tools",
        ),
    ),
    SopEntry(
        code="CD007-BS",
        name="Blushing",
        severity="Low",
        text=(
            "Blushing: a milky, hazy or cloudy white appearance in a clear film. "
            "Caused by moisture condensing into the film at high humidity, or a "
            "solvent that evaporates too fast and cools the surface."
        ),
        root_causes=(
            "High humidity in the coating booth",
            "Solvent blend too fast, surface cools below dew point",
        ),
        corrective_actions=(
            "Reduce booth humidity or raise substrate temperature above dew point",
            "Add a retarder or use a slower thinner",
        ),
    ),
)


class KBStore:
    """Read-only, ordered view over the SOP catalog."""

    def __init__(self, entries: Iterable[SopEntry] = SOP_CATALOG):
        self._entries: Tuple[SopEntry, ...] = tuple(entries)
        self._by_code: Dict[str, SopEntry] = {}
        for entry in self._entries:
            if entry.code in self._by_code:
                raise ValueError(f"Duplicate SOP code: {entry.code}")
            self._by_code[entry.code] = entry

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, code: Optional[str]) -> Optional[SopEntry]:
        if not code:
            return None
        return self._by_code.get(code)

    def all(self) -> Tuple[SopEntry, ...]:
        return self._entries

    def first(self) -> Optional[SopEntry]:
        return self._entries[0] if self._entries else None

    def by_legacy_name(self, name: str) -> Optional[SopEntry]:
        wanted = (name or "").strip().lower()
        for entry in self._entries:
            if entry.legacy_name == wanted:
                return entry
        return None

    def legacy_names(self) -> Tuple[str, ...]:
        return tuple(e.legacy_name for e in self._entries if e.legacy_name)
