"""
Heuristic detection of plannable travel requests.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass
class ClassificationResult:
    """Result of follow-up candidate classification."""

    candidate: bool
    reasons: list[str]


class RequestClassifier:
    """Decides whether a message is a trip-planning request worth a follow-up."""

    TRAVEL_KEYWORDS = {
        "trip",
        "trips",
        "itinerary",
        "travel",
        "vacation",
        "holiday",
        "getaway",
        "visit",
        "visiting",
        "tour",
        "sightseeing",
        "road trip",
        "plan a",
        "plan my",
    }

    DURATION_PATTERNS = [
        r"\b\d+\s*-?\s*(?:day|days|night|nights|week|weeks)\b",
        r"\b(?:one|two|three|four|five|six|seven|ten)\s*-?\s*(?:day|days|night|nights|week|weeks)\b",
        r"\ba (?:day|week|weekend)\b",
        r"\bweekend\b",
    ]

    def classify(self, text: str) -> ClassificationResult:
        lowered = (text or "").lower().strip()
        if not lowered:
            return ClassificationResult(candidate=False, reasons=[])

        reasons: list[str] = []
        if any(re.search(pattern, lowered) for pattern in self.DURATION_PATTERNS):
            reasons.append("duration_mention")
        if any(re.search(rf"\b{re.escape(kw)}\b", lowered) for kw in self.TRAVEL_KEYWORDS):
            reasons.append("travel_keywords")

        return ClassificationResult(candidate=bool(reasons), reasons=reasons)

    def is_follow_up_candidate(self, text: str) -> bool:
        return self.classify(text).candidate
