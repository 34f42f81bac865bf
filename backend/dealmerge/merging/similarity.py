"""Deterministic name similarity used to rank merge suggestions."""

from __future__ import annotations

import re
from difflib import SequenceMatcher

_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")
_MULTISPACE_RE = re.compile(r"\s+")

# Legal-form suffixes that should not make two company names look different.
_NOISE_TOKENS = frozenset({"inc", "llc", "ltd", "corp", "co", "gmbh", "plc", "the"})


def normalize_name(value: str | None) -> str:
    """Lowercase, strip punctuation and collapse whitespace."""

    if not value:
        return ""
    collapsed = _MULTISPACE_RE.sub(" ", value.strip().lower())
    cleaned = _NON_ALNUM_RE.sub("", collapsed)
    return _MULTISPACE_RE.sub(" ", cleaned).strip()


def name_tokens(value: str | None) -> set[str]:
    tokens = set(normalize_name(value).split())
    meaningful = tokens - _NOISE_TOKENS
    return meaningful or tokens


def token_set_similarity(left: str | None, right: str | None) -> float:
    """Jaccard overlap of name tokens in [0, 1]."""

    left_tokens = name_tokens(left)
    right_tokens = name_tokens(right)
    if not left_tokens or not right_tokens:
        return 0.0
    union = len(left_tokens | right_tokens)
    return len(left_tokens & right_tokens) / union if union else 0.0


def name_similarity(left: str | None, right: str | None) -> float:
    """Composite score: the better of sequence ratio and token overlap."""

    norm_left = normalize_name(left)
    norm_right = normalize_name(right)
    if not norm_left or not norm_right:
        return 0.0
    if norm_left == norm_right:
        return 1.0
    sequence = SequenceMatcher(a=norm_left, b=norm_right).ratio()
    return max(sequence, token_set_similarity(norm_left, norm_right))
