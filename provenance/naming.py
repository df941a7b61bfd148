"""Search-variation rules used for fuzzy registry name lookups.

Each rule is a pure ``str -> list[str]`` transform. Applying the rules in
order to a raw filename yields a deterministic, deduplicated set of
queries, from the most literal to the most relaxed.
"""

from __future__ import annotations

import re
from difflib import SequenceMatcher
from typing import Callable, Iterable, List, Sequence, Tuple

MIN_VARIATION_LENGTH = 2
MIN_LEADING_TOKEN_LENGTH = 3

_EXTENSION_PATTERN = re.compile(
    r"\.(safetensors|ckpt|pt|pth|bin)$", re.IGNORECASE
)
_PREFIX_PATTERN = re.compile(r"^(sd_xl_|sdxl_|sd_|v\d+_)", re.IGNORECASE)
_SUFFIX_PATTERN = re.compile(
    r"_(fp16|fp32|bf16|pruned|ema|inpainting)$", re.IGNORECASE
)
_VERSION_PATTERN = re.compile(r"_v?\d+(\.\d+)?$", re.IGNORECASE)
_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")
_DASHES = re.compile(r"[_-]")
_SEPARATORS = re.compile(r"[\s_-]")
_NON_ALNUM = re.compile(r"[^a-z0-9]")

SearchVariationSet = Tuple[str, ...]
VariationRule = Callable[[str], List[str]]


def clean_model_name(name: str) -> str:
    """Strip extension, release prefixes, precision and version suffixes."""
    cleaned = _EXTENSION_PATTERN.sub("", name)
    cleaned = _PREFIX_PATTERN.sub("", cleaned)
    cleaned = _SUFFIX_PATTERN.sub("", cleaned)
    cleaned = _VERSION_PATTERN.sub("", cleaned)
    return cleaned


def _with_lower(value: str) -> List[str]:
    return [value, value.lower()]


def verbatim(name: str) -> List[str]:
    return [name]


def lower_case(name: str) -> List[str]:
    return [name.lower()]


def cleaned(name: str) -> List[str]:
    return _with_lower(clean_model_name(name))


def camel_case_words(name: str) -> List[str]:
    return _with_lower(_CAMEL_BOUNDARY.sub(r"\1 \2", clean_model_name(name)))


def spaced(name: str) -> List[str]:
    return _with_lower(_DASHES.sub(" ", clean_model_name(name)))


def without_separators(name: str) -> List[str]:
    return _with_lower(_SEPARATORS.sub("", clean_model_name(name)))


def leading_token(name: str) -> List[str]:
    token = _SEPARATORS.split(clean_model_name(name))[0]
    if len(token) < MIN_LEADING_TOKEN_LENGTH:
        return []
    return _with_lower(token)


DEFAULT_RULES: Sequence[VariationRule] = (
    verbatim,
    lower_case,
    cleaned,
    camel_case_words,
    spaced,
    without_separators,
    leading_token,
)


def _dedupe(values: Iterable[str]) -> SearchVariationSet:
    seen: dict[str, None] = {}
    for value in values:
        if len(value) >= MIN_VARIATION_LENGTH:
            seen.setdefault(value, None)
    return tuple(seen)


def generate_search_variations(
    filename: str,
    rules: Sequence[VariationRule] = DEFAULT_RULES,
) -> SearchVariationSet:
    """Return the ordered, deduplicated query set for ``filename``."""
    candidates: List[str] = []
    for rule in rules:
        candidates.extend(rule(filename))
    return _dedupe(candidates)


def _normalize_for_comparison(value: str) -> str:
    return _NON_ALNUM.sub("", value.lower())


def name_similarity(left: str, right: str) -> float:
    """Score two names in ``[0, 1]`` ignoring case and punctuation.

    Identical names score 1.0 and containment scores 0.8; anything else
    falls back to the ``SequenceMatcher`` ratio.
    """
    norm_left = _normalize_for_comparison(left)
    norm_right = _normalize_for_comparison(right)
    if not norm_left or not norm_right:
        return 0.0
    if norm_left == norm_right:
        return 1.0
    if norm_left in norm_right or norm_right in norm_left:
        return 0.8
    return SequenceMatcher(None, norm_left, norm_right).ratio()
