"""
Product-name normalization for duplicate detection.

Item names on movement records are matched exactly (case-sensitive).  This
module is only used by the catalog to warn about near-duplicate product
names such as ``PVC Pipe 1/2"`` vs ``pvc pipe 1/2 inch``.
"""

import re

# Inch notations are rewritten to the token "in".
_INCH_PATTERNS = (
    re.compile(r'"'),
    re.compile(r"\binch\b", re.IGNORECASE),
    re.compile(r"\bin\b", re.IGNORECASE),
    re.compile("นิ้ว"),
)
_WHITESPACE = re.compile(r"\s+")
_TIMES = re.compile(r"[×x*]")
_TRAILING_PUNCT = re.compile(r"[.,/\\\-]+$")


def _collapse_spaces(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def normalize_name(raw: str) -> str:
    """Lower-case, collapse whitespace, unify inch and times notations, drop trailing punctuation."""
    text = _collapse_spaces(raw.lower())
    for pattern in _INCH_PATTERNS:
        text = pattern.sub(" in ", text)
    text = _collapse_spaces(text)
    text = _TIMES.sub("x", text)
    return _TRAILING_PUNCT.sub("", text)


def is_exact_name_match(a: str, b: str) -> bool:
    return normalize_name(a) == normalize_name(b)


def similar_candidates(
    query: str,
    candidates: list[str] | tuple[str, ...],
    min_length: int = 2,
) -> list[str]:
    """
    Candidates whose normalized name contains, or is contained in, the query.

    Results keep input order and are de-duplicated on the raw candidate.
    Queries shorter than ``min_length`` after normalization match nothing.
    """
    q = normalize_name(query)
    if not q or len(q) < min_length:
        return []

    out: list[str] = []
    seen: set[str] = set()
    for candidate in candidates:
        normalized = normalize_name(candidate)
        if not normalized:
            continue
        if (q in normalized or normalized in q) and candidate not in seen:
            out.append(candidate)
            seen.add(candidate)
    return out
