"""Continuity Checker - advisory drift detection between cards and the bible.

Rules are evaluated independently:

- no bible at all: one info warning, nothing else is checked
- the card's media was generated against an older bible version
- capitalised names in the card that the bible does not know
- excluded source topics appearing in the card (when guardrails are given)

Every rule is advisory. ``is_valid`` only turns false for an ``error``
severity warning, which no rule currently emits.

The name scan is a heuristic: capitalised non-name nouns are over-reported
and lower-case or multi-word names under-reported.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from ..grounding.guardrails import GuardrailSet, find_exclusions
from .composer import card_text
from .models import ProjectBible

SEVERITIES = ("info", "warning", "error")

NAME_TOKEN_RE = re.compile(r"\b[A-Z][A-Za-z]+\b")

# Articles, pronouns, connectives and generic story-structure words
STOP_WORDS = frozenset("""
a an the and but or nor so yet if then than when where while what who whom whose why how
i me my we us our you your he him his she her it its they them their this that these those
there here in on at to of for with from by as into onto over under after before about
is was are were be been am do does did has have had not no yes all some any each every
meanwhile later suddenly finally now soon once again still just also only even
day night morning evening today tomorrow yesterday
scene chapter act episode part card story opening middle end ending prologue epilogue
interior exterior int ext cut fade continued
mr mrs ms dr sir madam
""".split())


@dataclass
class ContinuityWarning:
    type: str
    severity: str
    message: str

    def __post_init__(self):
        if self.severity not in SEVERITIES:
            raise ValueError(f"Unknown severity: {self.severity}")


@dataclass
class ContinuityReport:
    is_valid: bool
    warnings: list[ContinuityWarning] = field(default_factory=list)
    unknown_characters: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "warnings": [vars(w) for w in self.warnings],
            "unknown_characters": self.unknown_characters,
            "suggestions": self.suggestions,
        }


def candidate_names(text: str) -> list[str]:
    """Capitalised tokens that are not stop words, in order, deduplicated."""
    seen = set()
    names = []
    for token in NAME_TOKEN_RE.findall(text):
        key = token.lower()
        if key in STOP_WORDS or key in seen:
            continue
        seen.add(key)
        names.append(token)
    return names


def check(
    bible: Optional[ProjectBible],
    card: dict,
    existing_asset_bible_version: Optional[str] = None,
    guardrails: Optional[GuardrailSet] = None,
) -> ContinuityReport:
    """Check one card against the current bible.

    Args:
        bible: Current project bible, or None.
        card: Card record (title, scene_text, captions, image_generation,
            bible_version_id_used).
        existing_asset_bible_version: Bible version the card's media was
            generated with; defaults to the card's ``bible_version_id_used``.
        guardrails: Source guardrails of the card's universe.
    """
    if bible is None:
        return ContinuityReport(
            is_valid=True,
            warnings=[ContinuityWarning(
                type="missing_bible",
                severity="info",
                message="This universe has no Project Bible; continuity cannot be checked.",
            )],
            suggestions=["Generate a Project Bible to lock characters, world and style."],
        )

    warnings: list[ContinuityWarning] = []
    suggestions: list[str] = []
    text = card_text(card)

    asset_version = existing_asset_bible_version or card.get("bible_version_id_used")
    if asset_version and asset_version != bible.version_id:
        warnings.append(ContinuityWarning(
            type="stale_bible",
            severity="warning",
            message=(
                f"Card media was generated with bible version {asset_version}; "
                f"the current version is {bible.version_id}."
            ),
        ))
        suggestions.append("Regenerate this card's media to apply the latest bible rules.")

    known = bible.known_names()
    unknown = [n for n in candidate_names(text) if n.lower() not in known]
    for name in unknown:
        warnings.append(ContinuityWarning(
            type="unknown_character",
            severity="warning",
            message=f"'{name}' appears in the card but is not in the Project Bible.",
        ))
        suggestions.append(f"Add {name} to the Project Bible")

    if guardrails is not None:
        for topic in find_exclusions(text, guardrails.exclusions):
            warnings.append(ContinuityWarning(
                type="excluded_topic",
                severity="warning",
                message=f"The card mentions '{topic}', which the source excludes.",
            ))
            suggestions.append(f"Remove references to {topic}")

    return ContinuityReport(
        is_valid=not any(w.severity == "error" for w in warnings),
        warnings=warnings,
        unknown_characters=unknown,
        suggestions=suggestions,
    )
