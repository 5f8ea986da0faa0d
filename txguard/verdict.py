"""
Verdict and summary composition.

Turns the raw score of a rule pass into the final clamped score, picks the
verdict against the policy's thresholds and renders the one-paragraph
summary shown next to it.
"""

from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .feature_extractors import format_number, format_usd
from .models import Policy, TransactionIntent, Unlimited, Verdict, parse_allowance
from .rules import intent_fields

# (warn_at, block_at)
DEFAULT_THRESHOLDS: Tuple[int, int] = (50, 80)
STRICT_THRESHOLDS: Tuple[int, int] = (40, 70)

VERDICT_NOTES: Dict[str, str] = {
    "ALLOW": "Looks safe based on current signals.",
    "WARN": "Potential risk detected. Review signals before proceeding.",
    "BLOCK": "High risk detected. Transaction should be blocked.",
}


def thresholds_for(policy: Optional[Policy]) -> Tuple[int, int]:
    if policy is not None and policy.strict_mode:
        return STRICT_THRESHOLDS
    return DEFAULT_THRESHOLDS


def clamp_score(score: int) -> int:
    return max(0, min(100, int(score)))


def compose_verdict(score: int, policy: Optional[Policy] = None) -> Verdict:
    warn_at, block_at = thresholds_for(policy)
    if score >= block_at:
        return "BLOCK"
    if score >= warn_at:
        return "WARN"
    return "ALLOW"


def _show(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return format_number(value)


def _or(value: Any, default: str) -> str:
    # empty strings fall back too, like an unset form field
    return _show(value) if value not in (None, "") else default


def compose_summary(intent: Union[TransactionIntent, Mapping[str, Any]], verdict: str, score: int) -> str:
    tx = intent_fields(intent)
    parts = [f"Verdict: {verdict} (Risk {score}/100)."]
    kind = tx.get("type")

    if kind == "approve":
        parts.append(f"Approval request for {_or(tx.get('token'), 'a token')}.")
        allowance = parse_allowance(tx.get("allowance"))
        if isinstance(allowance, Unlimited):
            parts.append("Approval is unlimited (MAX).")
        else:
            parts.append(f"Approval amount: {_or(tx.get('allowance'), 'unspecified')}.")
        if tx.get("spender"):
            parts.append(f"Spender: {_show(tx['spender'])}.")
        if tx.get("spenderVerified") is False:
            parts.append("Spender is not verified.")
    elif kind == "swap":
        slippage = tx.get("slippage")
        rate = "unspecified" if slippage in (None, "") else f"{_show(slippage)}%"
        parts.append(f"Swap via {_or(tx.get('to'), 'router')} with {rate} slippage.")
    elif kind == "transfer":
        parts.append(
            f"Transfer of {_or(tx.get('token'), 'asset')} to {_or(tx.get('to'), 'recipient')} "
            f"worth ~${format_usd(tx.get('valueUSD'))}."
        )
    elif kind == "sign":
        parts.append(
            f"Signature request ({_or(tx.get('messageType'), 'message')}) "
            f"from domain {_or(tx.get('domain'), 'unknown')}."
        )
    else:
        parts.append(f"Interaction with {_or(tx.get('to'), 'contract')} on {_or(tx.get('chain'), 'chain')}.")

    return " ".join(parts)
