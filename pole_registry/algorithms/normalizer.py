#!/usr/bin/env python3
"""
Pole Registry — Identifier Normalization

Canonicalizes the identifiers printed on pole plates so that labels which
look the same compare equal regardless of character width:

    "２４７エ７１４"  → "247エ714"
    "247ｴ714"        → "247エ714"
    "247 エ 714"     → "247エ714"

Matching is exact on the canonical form only.  There is deliberately no
fuzzy or substring comparison here.
"""

from __future__ import annotations

import re
import secrets
import string


# ---------------------------------------------------------------------------
# Character tables
# ---------------------------------------------------------------------------

_FULLWIDTH_OFFSET = 0xFEE0

_FULLWIDTH_DIGITS = {
    cp: cp - _FULLWIDTH_OFFSET for cp in range(ord("０"), ord("９") + 1)
}

_FULLWIDTH_LATIN = {
    cp: cp - _FULLWIDTH_OFFSET
    for lo, hi in (("Ａ", "Ｚ"), ("ａ", "ｚ"))
    for cp in range(ord(lo), ord(hi) + 1)
}

# Half-width kana followed by a voiced (ﾞ) or semi-voiced (ﾟ) mark.
# These must be replaced before the single-character table runs.
_HALFWIDTH_KANA_PAIRS: dict[str, str] = {
    "ｶﾞ": "ガ", "ｷﾞ": "ギ", "ｸﾞ": "グ", "ｹﾞ": "ゲ", "ｺﾞ": "ゴ",
    "ｻﾞ": "ザ", "ｼﾞ": "ジ", "ｽﾞ": "ズ", "ｾﾞ": "ゼ", "ｿﾞ": "ゾ",
    "ﾀﾞ": "ダ", "ﾁﾞ": "ヂ", "ﾂﾞ": "ヅ", "ﾃﾞ": "デ", "ﾄﾞ": "ド",
    "ﾊﾞ": "バ", "ﾋﾞ": "ビ", "ﾌﾞ": "ブ", "ﾍﾞ": "ベ", "ﾎﾞ": "ボ",
    "ﾊﾟ": "パ", "ﾋﾟ": "ピ", "ﾌﾟ": "プ", "ﾍﾟ": "ペ", "ﾎﾟ": "ポ",
    "ｳﾞ": "ヴ", "ﾜﾞ": "ヷ", "ｦﾞ": "ヺ",
}

_HALFWIDTH_KANA: dict[str, str] = {
    "ｱ": "ア", "ｲ": "イ", "ｳ": "ウ", "ｴ": "エ", "ｵ": "オ",
    "ｶ": "カ", "ｷ": "キ", "ｸ": "ク", "ｹ": "ケ", "ｺ": "コ",
    "ｻ": "サ", "ｼ": "シ", "ｽ": "ス", "ｾ": "セ", "ｿ": "ソ",
    "ﾀ": "タ", "ﾁ": "チ", "ﾂ": "ツ", "ﾃ": "テ", "ﾄ": "ト",
    "ﾅ": "ナ", "ﾆ": "ニ", "ﾇ": "ヌ", "ﾈ": "ネ", "ﾉ": "ノ",
    "ﾊ": "ハ", "ﾋ": "ヒ", "ﾌ": "フ", "ﾍ": "ヘ", "ﾎ": "ホ",
    "ﾏ": "マ", "ﾐ": "ミ", "ﾑ": "ム", "ﾒ": "メ", "ﾓ": "モ",
    "ﾔ": "ヤ", "ﾕ": "ユ", "ﾖ": "ヨ",
    "ﾗ": "ラ", "ﾘ": "リ", "ﾙ": "ル", "ﾚ": "レ", "ﾛ": "ロ",
    "ﾜ": "ワ", "ｦ": "ヲ", "ﾝ": "ン",
    "ｧ": "ァ", "ｨ": "ィ", "ｩ": "ゥ", "ｪ": "ェ", "ｫ": "ォ",
    "ｯ": "ッ", "ｬ": "ャ", "ｭ": "ュ", "ｮ": "ョ",
    "ｰ": "ー",
    "｡": "。", "､": "、", "｢": "「", "｣": "」", "･": "・",
}

_KANA_PAIR_RE = re.compile("|".join(map(re.escape, _HALFWIDTH_KANA_PAIRS)))
_KANA_SINGLE_TABLE = str.maketrans(_HALFWIDTH_KANA)

# Python's \s already covers U+3000; U+FEFF is listed for BOM-polluted input.
_WHITESPACE_RE = re.compile(r"[\s\u3000\ufeff]+")


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _halfwidth_kana_to_fullwidth(text: str) -> str:
    text = _KANA_PAIR_RE.sub(lambda m: _HALFWIDTH_KANA_PAIRS[m.group(0)], text)
    return text.translate(_KANA_SINGLE_TABLE)


def normalize(raw: str) -> str:
    """
    Return the canonical form of a plate identifier.

    Steps (order matters):
        1. Full-width digits → half-width digits
        2. Half-width katakana → full-width katakana (voiced pairs first)
        3. Full-width Latin letters → half-width Latin letters
        4. Remove all whitespace, including the ideographic space

    Characters outside these tables pass through unchanged, so the function
    is total and idempotent.
    """
    if not raw:
        return ""

    text = raw.translate(_FULLWIDTH_DIGITS)
    text = _halfwidth_kana_to_fullwidth(text)
    text = text.translate(_FULLWIDTH_LATIN)
    text = _WHITESPACE_RE.sub("", text)

    return text


def identifiers_match(raw_a: str, raw_b: str) -> bool:
    """True when two raw identifiers share a canonical form."""
    return normalize(raw_a) == normalize(raw_b)


# ---------------------------------------------------------------------------
# Number structure helpers (consecutive registration)
# ---------------------------------------------------------------------------

_PREFIX_DIGITS_KATAKANA = re.compile(r"^(\d+[ァ-ヴ]+)")
_PREFIX_DIGITS_LATIN = re.compile(r"^(\d+[A-Za-z]+)")
_PREFIX_LATIN = re.compile(r"^([A-Za-z]+)")
_SUFFIX_DIGITS = re.compile(r"(\d+)$")


def extract_area_prefix(number: str) -> str | None:
    """
    Extract the area prefix of a pole number.

        247エ714 → 247エ
        12A-345  → 12A
        XYZ123   → XYZ
    """
    if not number:
        return None
    for pattern in (_PREFIX_DIGITS_KATAKANA, _PREFIX_DIGITS_LATIN, _PREFIX_LATIN):
        m = pattern.match(number)
        if m:
            return m.group(1)
    return None


def extract_suffix_number(number: str) -> int | None:
    """Trailing integer of a pole number (247エ714 → 714)."""
    if not number:
        return None
    m = _SUFFIX_DIGITS.search(number)
    return int(m.group(1)) if m else None


def generate_next_number(previous: str) -> str | None:
    """
    Suggest the next pole number when registering poles along a line.

    The trailing number is incremented and its zero padding kept:
        247エ714 → 247エ715
        12A-099  → 12A100

    Returns None when the number has no recognizable prefix or suffix.
    """
    if not previous:
        return None

    prefix = extract_area_prefix(previous)
    suffix = extract_suffix_number(previous)
    if prefix is None or suffix is None:
        return None

    width = len(_SUFFIX_DIGITS.search(previous).group(1))
    return f"{prefix}{str(suffix + 1).zfill(width)}"


# ---------------------------------------------------------------------------
# NoID placeholders
# ---------------------------------------------------------------------------

PLACEHOLDER_PREFIX = "#NoID-"
_PLACEHOLDER_ALPHABET = string.ascii_lowercase + string.digits
_PLACEHOLDER_LENGTH = 8
_LEGACY_PLACEHOLDER_PREFIX = "?-pole"


def generate_placeholder_identifier() -> str:
    """Identifier for a pole that carries no plate, e.g. ``#NoID-a3f9b2c1``."""
    suffix = "".join(
        secrets.choice(_PLACEHOLDER_ALPHABET) for _ in range(_PLACEHOLDER_LENGTH)
    )
    return f"{PLACEHOLDER_PREFIX}{suffix}"


def is_placeholder_identifier(value: str) -> bool:
    return value.startswith(PLACEHOLDER_PREFIX) or value.startswith(
        _LEGACY_PLACEHOLDER_PREFIX
    )


def format_identifier(value: str) -> str:
    """Display form of an identifier; legacy ``?-pole…`` placeholders show as ``?``."""
    if value.startswith(_LEGACY_PLACEHOLDER_PREFIX):
        return "?"
    return value
