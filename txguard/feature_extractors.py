import math
import textdistance
from typing import Any, Iterable, Optional

UNLIMITED_MARKERS = {"MAX_UINT", "UNLIMITED", "MAX"}
MAX_UINT256 = 2 ** 256 - 1


def is_number(value: Any) -> bool:
    # bool is an int subclass; a flag is never an amount
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not (isinstance(value, float) and math.isnan(value))


def is_unlimited_allowance(value: Any) -> bool:
    if isinstance(value, bool) or value is None:
        return False
    if isinstance(value, int):
        return value >= MAX_UINT256
    if not isinstance(value, str):
        return False
    raw = value.strip()
    if raw.upper() in UNLIMITED_MARKERS:
        return True
    try:
        return int(raw, 16 if raw.lower().startswith("0x") else 10) >= MAX_UINT256
    except ValueError:
        return False


def format_number(value: Any) -> str:
    """Render a number the way a person would type it: 3 not 3.0."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_usd(value: Any) -> str:
    """Comma-grouped amount, at most three decimals."""
    if not is_number(value):
        return "0"
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.3f}".rstrip("0").rstrip(".")


def lookalike_score(a: str, b: str) -> float:
    # Use Jaro-Winkler similarity as a reasonable proxy
    if not a or not b:
        return 0.0
    return float(textdistance.jaro_winkler(a.lower(), b.lower()))


def closest_known_domain(domain: str, known: Iterable[str], threshold: float) -> Optional[str]:
    """Known domain that `domain` imitates, or None.

    An exact match is the real site, not a lookalike.
    """
    if not domain:
        return None
    d = domain.strip().lower()
    best, best_score = None, 0.0
    for candidate in known:
        c = candidate.lower()
        if c == d:
            return None
        score = lookalike_score(d, c)
        if score >= threshold and score > best_score:
            best, best_score = candidate, score
    return best
