"""@mention extraction for comment bodies.

Supports ``@"Full Name"`` for names with spaces and ``@handle`` for a
single word (letters, digits, underscore, dot).
"""

import re

MENTION_RE = re.compile(r'@"([^"]+)"|@([\w.]+)')


def extract_mentions(text):
    """Return the unique mentioned names, lowercased, in first-seen order."""
    if not text:
        return []
    seen = []
    for quoted, bare in MENTION_RE.findall(text):
        name = (quoted or bare).strip().rstrip(".").lower()
        if name and name not in seen:
            seen.append(name)
    return seen
