"""Character-encoding and delimiter detection for institution exports.

Candidates are scored on locale evidence, with chardet's statistical guess
as one extra point. Detection never raises: it always returns a best-effort
guess. A wrong guess shows up downstream as missing mandatory headers.
"""

from __future__ import annotations

import codecs
import logging
import re
from dataclasses import dataclass, field

import chardet

from .brokerage_formats import NORDNET_FORMAT, BrokerageFormat

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 2048
SCORE_THRESHOLD = 2
DELIMITER_CANDIDATES = ("\t", ";", ",", "|")

_BOM_CHAR = "\ufeff"
_REPLACEMENT_CHAR = "\ufffd"

_BOMS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF8, "utf-8"),
    (codecs.BOM_UTF16_LE, "utf-16-le"),
    (codecs.BOM_UTF16_BE, "utf-16-be"),
)

# Codec families that may legitimately carry each BOM.
_BOM_FAMILIES = {
    "utf-8": {"utf-8", "utf-8-sig"},
    "utf-16-le": {"utf-16", "utf-16-le"},
    "utf-16-be": {"utf-16", "utf-16-be"},
}

# Five or more lone letters separated by blanks/NULs, e.g. "B o k f o r" from
# UTF-16 text read through an 8-bit code page.
_SPACED_LETTERS = re.compile(r"(?:(?<![^\s\x00])[^\W\d_][ \x00]){5,}")
# UTF-8 multi-byte sequences decoded as Latin-1/cp1252 ("Ã¸" for "ø").
_MOJIBAKE = re.compile(
    "[\u00c2\u00c3]"
    "[\u0080-\u00bf\u0152\u0153\u0160\u0161\u0178\u017d\u017e\u0192\u02c6\u02dc\u2013-\u203a\u20ac\u2122]"
)
_NUMERIC_ID = re.compile(r"(?<!\d)\d{8,12}(?!\d)")
_ISIN_LIKE = re.compile(r"\b[A-Z]{2}[A-Z0-9]{9}\d\b")
_FIELD_SEPARATORS = re.compile(r"[\t;,|\r\n]")
# Minimum chardet confidence before its guess counts toward a candidate's score.
CHARDET_MIN_CONFIDENCE = 0.5


@dataclass(slots=True)
class EncodingGuess:
    encoding: str
    bom_length: int = 0
    score: int = 0
    candidates: dict[str, int] = field(default_factory=dict)


def detect_bom(data: bytes) -> tuple[str, int] | None:
    """Return (encoding, bom length) when ``data`` starts with a byte-order mark."""
    for bom, encoding in _BOMS:
        if data.startswith(bom):
            return encoding, len(bom)
    return None


def _guess_bomless_utf16(sample: bytes) -> str | None:
    """Spot UTF-16 without a BOM from NUL bytes in alternating positions."""
    if len(sample) < 8:
        return None
    even = sample[0::2]
    odd = sample[1::2]
    even_nuls = even.count(0) / len(even)
    odd_nuls = odd.count(0) / len(odd)
    if odd_nuls > 0.3 and even_nuls < 0.05:
        return "utf-16-le"
    if even_nuls > 0.3 and odd_nuls < 0.05:
        return "utf-16-be"
    return None


def _try_decode(sample: bytes, encoding: str) -> str | None:
    # Incremental so a multi-byte character cut by the sample edge is not an error.
    decoder = codecs.getincrementaldecoder(encoding)(errors="strict")
    try:
        return decoder.decode(sample, final=False)
    except UnicodeDecodeError:
        return None


def is_garbled(text: str) -> bool:
    """True when decoded text carries signatures of a wrong encoding."""
    if _REPLACEMENT_CHAR in text or "\x00" in text:
        return True
    if _MOJIBAKE.search(text):
        return True
    return bool(_SPACED_LETTERS.search(text))


def score_text(text: str, fmt: BrokerageFormat = NORDNET_FORMAT) -> int:
    """Heuristic plausibility score of ``text`` for the format's locale."""
    score = 0

    accented = {char for char in fmt.locale_characters if char in text}
    score += min(len(accented), 3)

    lowered = text.lower()
    vocabulary_hits = sum(1 for term in fmt.vocabulary if term in lowered)
    if vocabulary_hits >= 3:
        score += 2
    elif vocabulary_hits:
        score += 1

    fields = {token.strip().strip('"').lower() for token in _FIELD_SEPARATORS.split(text)}
    header_hits = sum(1 for header in fmt.expected_headers if header.lower() in fields)
    if header_hits >= 6:
        score += 3
    elif header_hits >= 3:
        score += 2
    elif header_hits:
        score += 1

    currency_pattern = re.compile(r"\b(?:" + "|".join(fmt.currencies) + r")\b")
    if _NUMERIC_ID.search(text) or _ISIN_LIKE.search(text) or currency_pattern.search(text):
        score += 1

    return score


def _codec_name(encoding: str | None) -> str | None:
    if not encoding:
        return None
    try:
        return codecs.lookup(encoding).name
    except LookupError:
        return None


def chardet_guess(sample: bytes) -> str | None:
    """Return chardet's codec name for ``sample`` when it is confident enough."""
    result = chardet.detect(sample)
    if (result.get("confidence") or 0.0) < CHARDET_MIN_CONFIDENCE:
        return None
    return _codec_name(result.get("encoding"))


def detect_encoding(
    sample: bytes,
    filename: str | None = None,
    fmt: BrokerageFormat = NORDNET_FORMAT,
) -> EncodingGuess:
    """Pick the most plausible encoding for the first bytes of an export."""
    sample = sample[:SAMPLE_SIZE]

    bom = detect_bom(sample)
    if bom is not None:
        encoding, length = bom
        logger.debug("BOM detected", extra={"encoding": encoding, "source_file": filename})
        return EncodingGuess(encoding=encoding, bom_length=length)

    utf16 = _guess_bomless_utf16(sample)
    if utf16 is not None and _try_decode(sample, utf16) is not None:
        logger.debug("BOM-less UTF-16 detected", extra={"encoding": utf16, "source_file": filename})
        return EncodingGuess(encoding=utf16)

    statistical = chardet_guess(sample)
    candidates: dict[str, int] = {}
    for encoding in fmt.candidate_encodings:
        text = _try_decode(sample, encoding)
        if text is None:
            continue
        if is_garbled(text):
            logger.debug("Rejected garbled decode", extra={"encoding": encoding})
            continue
        score = score_text(text, fmt)
        if statistical is not None and _codec_name(encoding) == statistical:
            score += 1
        candidates[encoding] = score
        if score >= SCORE_THRESHOLD:
            logger.info(
                "Detected encoding %s (score %d)",
                encoding,
                score,
                extra={"source_file": filename},
            )
            return EncodingGuess(encoding=encoding, score=score, candidates=candidates)

    logger.info(
        "No encoding cleared the threshold; falling back to %s",
        fmt.legacy_encoding,
        extra={"source_file": filename, "candidates": candidates},
    )
    return EncodingGuess(
        encoding=fmt.legacy_encoding,
        score=candidates.get(fmt.legacy_encoding, 0),
        candidates=candidates,
    )


def detect_delimiter(text: str) -> str:
    """Choose the delimiter that splits the first line into the most columns."""
    lines = text.lstrip(_BOM_CHAR).splitlines()
    first_line = lines[0] if lines else ""
    best, best_columns = ",", 1
    for delimiter in DELIMITER_CANDIDATES:
        columns = len(first_line.split(delimiter))
        if columns > best_columns:
            best, best_columns = delimiter, columns
    return best


def decode_bytes(data: bytes, encoding: str) -> str:
    """Decode a whole buffer strictly, dropping any byte-order mark.

    Raises ``UnicodeDecodeError`` when the bytes are not valid in ``encoding``
    and ``LookupError`` for an unknown codec name.
    """
    codec = codecs.lookup(encoding).name
    bom = detect_bom(data)
    if bom is not None and codec in _BOM_FAMILIES[bom[0]]:
        bom_encoding, length = bom
        return data[length:].decode(bom_encoding, errors="strict")
    return data.decode(encoding, errors="strict").lstrip(_BOM_CHAR)
