"""Map a log line to a progress-percentage hint."""

from ..core.constants import PROGRESS_INDICATORS


def classify(text: str, indicators: tuple[tuple[str, int], ...] = PROGRESS_INDICATORS) -> int | None:
    """Return the percentage of the first indicator whose keyword occurs in text.

    Matching is a case-sensitive substring test in table order; once a keyword
    matches, later entries are not consulted. Returns None when nothing matches.
    """
    for keyword, percent in indicators:
        if keyword in text:
            return percent
    return None
