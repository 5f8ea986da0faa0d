import json
from typing import List, Optional

from .models import EvaluationResult, Policy, Reason, TransactionIntent

MAX_LISTED_REASONS = 8


def visible_reasons(result: EvaluationResult, policy: Optional[Policy] = None) -> List[Reason]:
    """Reasons to display. `explain_more` only filters, the trail is unchanged."""
    if policy is not None and not policy.explain_more:
        return []
    return result.reasons[:MAX_LISTED_REASONS]


def build_report(intent: TransactionIntent, result: EvaluationResult, scenario: str = "Custom") -> str:
    lines = [
        "Transaction Risk Report",
        f"Scenario: {scenario}",
        f"Verdict: {result.verdict}",
        f"Risk Score: {result.score}/100",
        f"Top signal: {result.top_signal}",
        "",
        "Top signals:",
        *[f"- {r.title}: {r.detail}" for r in result.reasons[:MAX_LISTED_REASONS]],
        "",
        "Summary:",
        result.summary,
        "",
        "Transaction JSON:",
        json.dumps(intent.to_wire(), indent=2, default=str),
    ]
    return "\n".join(lines)
