import logging
import yaml
from typing import Dict, Any, List, Tuple, Callable, Mapping, Optional, Union
from dataclasses import dataclass, field
from pydantic import BaseModel, Field, ValidationError

from .feature_extractors import is_number, format_number, format_usd
from .models import TransactionIntent, Policy, Reason, RuleHit, Unlimited, parse_allowance, NO_CRITICAL_SIGNALS

logger = logging.getLogger(__name__)

Evidence = Dict[str, Any]
ConditionHandler = Callable[[Dict[str, Any], Policy, Any], Tuple[bool, Evidence]]


# ---- Rule file schema ----
class TopSignalSpec(BaseModel):
    label: str
    when: str = Field(default="always", pattern="^(always|default_only)$")
    unless: List[str] = Field(default_factory=list)


class RuleSpec(BaseModel):
    id: str
    title: str
    detail: str = ""
    conditions: Dict[str, Any]
    requires: Optional[str] = None
    weight: int = 0
    floor: Optional[int] = None
    top_signal: Optional[TopSignalSpec] = None


class RuleFile(BaseModel):
    version: int = 1
    rules: List[RuleSpec]
    policy_packs: Dict[str, Policy] = Field(default_factory=dict)
    known_domains: List[str] = Field(default_factory=list)


@dataclass
class SignalTrail:
    """Raw output of the rule pass; score is not clamped yet."""
    score: int = 0
    hits: List[RuleHit] = field(default_factory=list)
    top_signal: str = NO_CRITICAL_SIGNALS

    @property
    def reasons(self) -> List[Reason]:
        return [Reason(title=h.title, detail=h.detail) for h in self.hits]


class _Blank(dict):
    def __missing__(self, key):
        return ""


def intent_fields(intent: Union[TransactionIntent, Mapping[str, Any], None]) -> Dict[str, Any]:
    """Wire-named field dict for any intent shape; unusable input is empty."""
    if isinstance(intent, TransactionIntent):
        return intent.to_wire()
    if not isinstance(intent, Mapping):
        return {}
    aliases = {name: f.alias for name, f in TransactionIntent.model_fields.items() if f.alias}
    return {aliases.get(k, k): v for k, v in intent.items()}


class RuleEngine:
    def __init__(self, rules_path: str):
        self.rules_path = rules_path
        self.rules: List[RuleSpec] = []
        self.policy_packs: Dict[str, Policy] = {}
        self.known_domains: List[str] = []
        self.condition_handlers: Dict[str, ConditionHandler] = {
            "intent.type_is": self._cond_type_is,
            "intent.flag": self._cond_flag,
            "approval.unlimited": self._cond_unlimited,
            "approval.spender_verified_is": self._cond_spender_verified,
            "contract.reputation_is": self._cond_reputation,
            "contract.age_lt_days": self._cond_age,
            "value.usd_gte": self._cond_value,
            "policy.enabled": self._cond_policy,
        }
        self.load_rules()

    def load_rules(self):
        try:
            with open(self.rules_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            parsed = RuleFile.model_validate(data)
            self._check(parsed.rules)
        except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
            raise RuntimeError(f"Failed to load rules from {self.rules_path}: {e}") from e
        self.rules = parsed.rules
        self.policy_packs = parsed.policy_packs
        self.known_domains = parsed.known_domains
        logger.info("Loaded %d rules and %d policy packs from %s",
                    len(self.rules), len(self.policy_packs), self.rules_path)

    def _check(self, rules: List[RuleSpec]):
        seen = set()
        for r in rules:
            if r.id in seen:
                raise ValueError(f"duplicate rule id {r.id!r}")
            if r.requires is not None and r.requires not in seen:
                raise ValueError(f"rule {r.id!r} requires {r.requires!r}, which is not an earlier rule")
            for cond in r.conditions.get("all", r.conditions.get("any", [r.conditions])):
                for key in cond:
                    if key not in self.condition_handlers:
                        raise ValueError(f"rule {r.id!r} uses unknown condition {key!r}")
            seen.add(r.id)

    def policy_pack(self, name: str) -> Policy:
        if name not in self.policy_packs:
            raise KeyError(name)
        return self.policy_packs[name]

    # ---- Condition primitives ----
    def _cond_type_is(self, tx: Dict[str, Any], _, expected: str):
        return (tx.get("type") == expected, {})

    def _cond_flag(self, tx: Dict[str, Any], _, name: str):
        return (tx.get(name) is True, {})

    def _cond_unlimited(self, tx: Dict[str, Any], _, expected: bool):
        allowance = parse_allowance(tx.get("allowance"))
        ok = isinstance(allowance, Unlimited) == bool(expected)
        return (ok, {"allowance": allowance} if ok else {})

    def _cond_spender_verified(self, tx: Dict[str, Any], _, expected: bool):
        # only an explicit value counts; absent is "unknown", not False
        actual = tx.get("spenderVerified")
        return (isinstance(actual, bool) and actual == bool(expected), {})

    def _cond_reputation(self, tx: Dict[str, Any], _, expected: str):
        return (tx.get("contractReputation") == expected, {})

    def _cond_age(self, tx: Dict[str, Any], _, max_days: int):
        days = tx.get("contractAgeDays")
        ok = is_number(days) and days < max_days
        return (ok, {"contract_age_days": format_number(days)} if ok else {})

    def _cond_value(self, tx: Dict[str, Any], _, threshold: int):
        value = tx.get("valueUSD")
        ok = is_number(value) and value >= threshold
        return (ok, {"value_usd": format_usd(value)} if ok else {})

    def _cond_policy(self, _, policy: Policy, name: str):
        return (getattr(policy, name, False) is True, {})

    # ---- Evaluation ----
    def eval_conditions(self, tx: Dict[str, Any], policy: Policy, conds: Dict[str, Any]) -> Tuple[bool, Evidence]:
        if "any" in conds:
            for c in conds["any"]:
                ok, ev = self.eval_condition(tx, policy, c)
                if ok:
                    return True, ev
            return False, {}
        if "all" in conds:
            combined = {}
            for c in conds["all"]:
                ok, ev = self.eval_condition(tx, policy, c)
                if not ok:
                    return False, {}
                combined.update(ev)
            return True, combined
        return self.eval_condition(tx, policy, conds)

    def eval_condition(self, tx: Dict[str, Any], policy: Policy, cond: Dict[str, Any]) -> Tuple[bool, Evidence]:
        for key, val in cond.items():
            handler = self.condition_handlers.get(key)
            if handler is not None:
                return handler(tx, policy, val)
        return False, {}

    def apply(self, intent: Union[TransactionIntent, Mapping[str, Any]], policy: Optional[Policy] = None) -> SignalTrail:
        policy = policy or Policy()
        tx = intent_fields(intent)
        trail = SignalTrail()
        fired = set()

        for r in self.rules:
            if r.requires is not None and r.requires not in fired:
                continue
            ok, ev = self.eval_conditions(tx, policy, r.conditions)
            if not ok:
                continue
            fired.add(r.id)

            trail.score += r.weight
            if r.floor is not None:
                trail.score = max(trail.score, r.floor)
            trail.hits.append(RuleHit(
                rule_id=r.id,
                title=r.title,
                detail=r.detail.format_map(_Blank(ev)),
                weight=r.weight,
                floor=r.floor,
            ))

            sig = r.top_signal
            if sig is None or trail.top_signal in sig.unless:
                continue
            if sig.when == "always" or trail.top_signal == NO_CRITICAL_SIGNALS:
                trail.top_signal = sig.label

        logger.debug("rule pass: type=%s fired=%s raw_score=%d",
                     tx.get("type"), [h.rule_id for h in trail.hits], trail.score)
        return trail
