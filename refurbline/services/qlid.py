"""
QLID Item Identifier Codec

Every refurbishment job is keyed by a QLID, a scannable identifier that
encodes one unsigned integer (the "tick") issued by the identifier counter.

Format: QLID[SERIES][COUNTER]
   - QLID:    Fixed prefix (4 chars)
   - SERIES:  Optional letters, bijective base-26 (A=1 ... Z=26, AA=27 ...)
   - COUNTER: Zero-padded decimal counter (exactly 10 digits)

   tick = series_index * 10^10 + counter

Examples:
   tick 1               -> QLID0000000001
   tick 10^10           -> QLIDA0000000000
   tick 27 * 10^10 + 5  -> QLIDAA0000000005

Scan payloads printed on labels carry the container (pallet) id in front:
   P1BBY-QLID0000000001

This module is pure: no database access. Counter allocation lives in
identifier_service.py.
"""

import re
from dataclasses import dataclass
from typing import Optional

from refurbline.core.errors import InvalidIdentifierFormat


QLID_PREFIX = "QLID"
COUNTER_DIGITS = 10
SERIES_SIZE = 10 ** COUNTER_DIGITS
SCAN_SEPARATOR = "-"

QLID_PATTERN = re.compile(r"QLID([A-Z]*)([0-9]{10})")


@dataclass(frozen=True)
class ScanResult:
    """A parsed bare identifier or container scan payload."""
    qlid: str
    tick: int
    container_id: Optional[str] = None

    @property
    def series(self) -> str:
        return QLID_PATTERN.fullmatch(self.qlid).group(1)


# ==================== Series Letter Helpers ====================

def series_to_index(letters: str) -> int:
    """Convert series letters to their 1-based bijective base-26 index ('' -> 0)."""
    index = 0
    for char in letters:
        index = index * 26 + (ord(char) - 64)  # A=65 in ASCII
    return index


def index_to_series(index: int) -> str:
    """Convert a series index back to letters (0 -> '', 1 -> 'A', 27 -> 'AA')."""
    letters = []
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


# ==================== Encode / Decode ====================

def tick_to_qlid(tick: int) -> str:
    """
    Encode a tick as a QLID.

    Raises:
        ValueError: If tick is negative
    """
    if tick < 0:
        raise ValueError(f"Tick must be non-negative, got {tick}")
    series_index, counter = divmod(tick, SERIES_SIZE)
    return f"{QLID_PREFIX}{index_to_series(series_index)}{counter:0{COUNTER_DIGITS}d}"


def qlid_to_tick(qlid: str) -> int:
    """
    Decode a well-formed QLID to its tick.

    Raises:
        InvalidIdentifierFormat: If qlid is not a well-formed identifier
    """
    match = QLID_PATTERN.fullmatch(qlid) if isinstance(qlid, str) else None
    if not match:
        raise InvalidIdentifierFormat(f"'{qlid}' is not a valid QLID", identifier=str(qlid))
    series, counter = match.groups()
    return series_to_index(series) * SERIES_SIZE + int(counter)


def is_valid_qlid(value) -> bool:
    """Pure format check: prefix, optional series letters, exactly 10 digits."""
    return isinstance(value, str) and QLID_PATTERN.fullmatch(value) is not None


# ==================== Scan Payloads ====================

def format_scan_payload(qlid: str, container_id: Optional[str] = None) -> str:
    """Build the compound payload printed on a label (container id + QLID)."""
    if not is_valid_qlid(qlid):
        raise InvalidIdentifierFormat(f"'{qlid}' is not a valid QLID", identifier=qlid)
    if container_id:
        return f"{container_id}{SCAN_SEPARATOR}{qlid}"
    return qlid


def parse_scan(payload: str) -> ScanResult:
    """
    Parse a bare QLID or a '<containerId>-QLID...' scan payload.

    Surrounding whitespace is ignored and the identifier part is matched
    case-insensitively. The container id is returned as scanned.

    Raises:
        InvalidIdentifierFormat: If neither pattern matches
    """
    if not isinstance(payload, str):
        raise InvalidIdentifierFormat("Scan payload must be a string")

    raw = payload.strip()
    upper = raw.upper()

    if QLID_PATTERN.fullmatch(upper):
        return ScanResult(qlid=upper, tick=qlid_to_tick(upper))

    marker = SCAN_SEPARATOR + QLID_PREFIX
    split_at = upper.rfind(marker)
    if split_at > 0:
        candidate = upper[split_at + 1:]
        if QLID_PATTERN.fullmatch(candidate):
            return ScanResult(
                qlid=candidate,
                tick=qlid_to_tick(candidate),
                container_id=raw[:split_at],
            )

    raise InvalidIdentifierFormat(
        f"'{raw}' is neither a QLID nor a '<containerId>-QLID' scan payload",
        identifier=raw,
    )


def parse(payload: str) -> int:
    """Parse a scan payload or bare identifier to its tick."""
    return parse_scan(payload).tick
