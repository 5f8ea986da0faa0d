import json
import logging
import os
from functools import lru_cache
from typing import Any, List, Mapping, Optional, Tuple, Union

from pydantic import ValidationError

from .models import EvaluationResult, Policy, RuleHit, TransactionIntent
from .rules import RuleEngine
from .verdict import clamp_score, compose_summary, compose_verdict

logger = logging.getLogger(__name__)

DEFAULT_RULES_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "rules", "rules.yaml")

IntentLike = Union[TransactionIntent, Mapping[str, Any]]
PolicyLike = Union[Policy, Mapping[str, Any], None]


class InvalidIntentError(ValueError):
    """Input could not be read as a transaction intent; nothing was evaluated."""

    def __init__(self, errors: Optional[List[Any]] = None):
        super().__init__("Invalid input")
        self.errors = errors or []


@lru_cache(maxsize=None)
def default_engine() -> RuleEngine:
    return RuleEngine(os.getenv("RULES_PATH", DEFAULT_RULES_PATH))


def as_policy(policy: PolicyLike) -> Policy:
    """Caller-side check of a policy mapping; toggles must be booleans."""
    if isinstance(policy, Policy):
        return policy
    if policy is None:
        return Policy()
    if not isinstance(policy, Mapping):
        raise InvalidIntentError([{"loc": ["policy"], "msg": "policy must be a mapping"}])
    try:
        return Policy.model_validate(dict(policy))
    except ValidationError as e:
        logger.info("rejected policy: %d validation error(s)", e.error_count())
        raise InvalidIntentError(
            [{"loc": ["policy", *err["loc"]], "msg": err["msg"]} for err in e.errors()]
        ) from e


def parse_intent(raw: Union[str, bytes, Mapping[str, Any]]) -> TransactionIntent:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            logger.info("rejected intent: not JSON (%s)", e)
            raise InvalidIntentError([{"loc": [], "msg": str(e)}]) from e
    if not isinstance(raw, Mapping):
        raise InvalidIntentError([{"loc": [], "msg": "intent must be a JSON object"}])
    try:
        return TransactionIntent.model_validate(dict(raw))
    except ValidationError as e:
        logger.info("rejected intent: %d validation error(s)", e.error_count())
        raise InvalidIntentError(
            [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
        ) from e


def evaluate_with_trace(
    intent: IntentLike,
    policy: PolicyLike = None,
    engine: Optional[RuleEngine] = None,
) -> Tuple[EvaluationResult, List[RuleHit]]:
    engine = engine or default_engine()
    policy = as_policy(policy)

    trail = engine.apply(intent, policy)
    score = clamp_score(trail.score)
    verdict = compose_verdict(score, policy)
    result = EvaluationResult(
        score=score,
        verdict=verdict,
        reasons=trail.reasons,
        top_signal=trail.top_signal,
        summary=compose_summary(intent, verdict, score),
    )
    logger.debug("evaluated: score=%d verdict=%s top=%r", score, verdict, trail.top_signal)
    return result, trail.hits


def evaluate(intent: IntentLike, policy: PolicyLike = None, engine: Optional[RuleEngine] = None) -> EvaluationResult:
    """Score an intent under a policy. Same inputs, same result."""
    return evaluate_with_trace(intent, policy, engine)[0]
