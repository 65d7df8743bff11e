"""Approval classification for follow-up messages.

A follow-up counts as approval when it contains one of the approval words
or phrases as a whole word, case-insensitively. A match directly preceded
by a negation ("not approved", "don't proceed") is ignored.
"""

import re

APPROVAL_PATTERN = re.compile(
    r"\b(approved?|lgtm|looks?\s*good|go\s*ahead|proceed|start\s+work|yes|"
    r"ok(ay)?|confirm(ed)?|ship\s*it|sounds?\s*good)\b",
    re.IGNORECASE,
)

NEGATION_PATTERN = re.compile(
    r"\b(not|don'?t|do\s+not|never)\s+$",
    re.IGNORECASE,
)


def is_approval(text: str) -> bool:
    """Return True if ``text`` approves the posted plan.

    Example:
        >>> is_approval("LGTM, ship it")
        True
        >>> is_approval("not yet, need more info")
        False
    """
    if not text:
        return False
    message = text.strip()
    for match in APPROVAL_PATTERN.finditer(message):
        if NEGATION_PATTERN.search(message[: match.start()]):
            continue
        return True
    return False
