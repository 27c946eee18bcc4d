"""Name normalizers used for identity matching.

``normalize_name`` is the strict comparison key: two names are the same
entity name iff their strict keys are equal. ``normalize_for_matching`` is
looser and only ever widens find-or-create recall during ingestion; it is
never used to raise a naming conflict.
"""

from __future__ import annotations

import re
import unicodedata
from functools import lru_cache
from typing import Iterable

_WHITESPACE_RE = re.compile(r"\s+")
_COLON_RE = re.compile(r"[：:]")
_STAR_RUN_RE = re.compile(r"\*+")
_TRAILING_PUNCT_RE = re.compile(r"[\s,.;·\-]+$")

# Longest first so "有限公司" is not left behind as "有限" after "公司" goes.
_CJK_SUFFIXES = (
    "股份有限公司",
    "有限责任公司",
    "有限公司",
    "公司",
    "商店",
    "超市",
    "商场",
)

_LATIN_SUFFIX_RE = re.compile(
    r"(?:[\s,]+(?:co\.?,?\s*ltd\.?|co\.?|ltd\.?|limited|llc\.?|l\.l\.c\.?|inc\.?|"
    r"incorporated|corp\.?|corporation|company|plc\.?|gmbh|"
    r"store|stores|shop|supermarket|market))+$"
)

PLACEHOLDER_NAMES = frozenset(
    {
        "processing",
        "processing...",
        "pending",
        "pending...",
        "loading",
        "loading...",
        "识别中",
        "处理中",
        "待处理",
    }
)


def normalize_name(name: str | None) -> str:
    """Strict key: NFKC width folding, whitespace collapse, locale-free lowercase."""
    if not name:
        return ""
    folded = unicodedata.normalize("NFKC", name)
    return _WHITESPACE_RE.sub(" ", folded).strip().lower()


def normalize_for_matching(name: str | None) -> str:
    strict = normalize_name(name)
    if not strict:
        return strict
    key = _COLON_RE.sub(":", strict)
    for suffix in _CJK_SUFFIXES:
        key = key.replace(suffix, "")
    key = _LATIN_SUFFIX_RE.sub("", key)
    key = _TRAILING_PUNCT_RE.sub("", key)
    key = _WHITESPACE_RE.sub(" ", key).strip()
    return key or strict


def normalize_account_name(name: str | None) -> str:
    key = normalize_name(name)
    key = _COLON_RE.sub(":", key)
    return _STAR_RUN_RE.sub("*", key)


@lru_cache(maxsize=8)
def _card_suffix_patterns(min_digits: int) -> tuple[re.Pattern[str], ...]:
    digits = rf"(\d{{{min_digits},}})"
    sources = (
        rf"\*{{2,}}{digits}",
        rf"\*{digits}",
        rf"尾号[：:\s]*{digits}",
        rf"(?:last\s*4|last\s*four)[：:\s]*{digits}",
        rf"(?:ending\s*in|ends\s*in)[：:\s]*{digits}",
        rf"#\s*{digits}",
        rf"\b{digits}\s*(?:尾号|ending|last)",
        rf"{digits}$",
    )
    return tuple(re.compile(source, re.IGNORECASE) for source in sources)


def extract_card_suffix(name: str | None, min_digits: int = 4) -> str | None:
    """Pull a trailing card number fragment out of a free-text account name.

    Patterns are tried in order and the first hit wins, so "**1234" beats a
    bare trailing number elsewhere in the string.
    """
    if not name:
        return None
    text = unicodedata.normalize("NFKC", name).strip()
    for pattern in _card_suffix_patterns(min_digits):
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def is_placeholder_name(name: str | None, extra: Iterable[str] = ()) -> bool:
    key = normalize_name(name)
    if not key:
        return True
    if key in PLACEHOLDER_NAMES:
        return True
    return key in {normalize_name(item) for item in extra}


__all__ = [
    "PLACEHOLDER_NAMES",
    "normalize_name",
    "normalize_for_matching",
    "normalize_account_name",
    "extract_card_suffix",
    "is_placeholder_name",
]
