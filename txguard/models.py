from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Any, Literal, Union
from dataclasses import dataclass

from .feature_extractors import is_unlimited_allowance

Verdict = Literal["ALLOW", "WARN", "BLOCK"]
NO_CRITICAL_SIGNALS = "No critical signals"


class TransactionIntent(BaseModel):
    """A proposed on-chain action or off-chain signature request.

    Values are kept as supplied; the evaluator decides per field whether a
    value counts, so a wrong-shaped field behaves like a missing one.
    """
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str
    allowance: Optional[Any] = None
    spender: Optional[Any] = None
    spender_verified: Optional[Any] = Field(default=None, alias="spenderVerified")
    token: Optional[Any] = None
    contract_reputation: Optional[Any] = Field(default=None, alias="contractReputation")
    contract_age_days: Optional[Any] = Field(default=None, alias="contractAgeDays")
    value_usd: Optional[Any] = Field(default=None, alias="valueUSD")
    domain_lookalike: Optional[Any] = Field(default=None, alias="domainLookalike")
    known_drainer_pattern: Optional[Any] = Field(default=None, alias="knownDrainerPattern")
    domain: Optional[Any] = None
    message_type: Optional[Any] = Field(default=None, alias="messageType")
    upgradeable: Optional[Any] = None
    admin_can_withdraw: Optional[Any] = Field(default=None, alias="adminCanWithdraw")
    admin_can_pause: Optional[Any] = Field(default=None, alias="adminCanPause")
    gas_anomaly: Optional[Any] = Field(default=None, alias="gasAnomaly")
    to: Optional[Any] = None
    chain: Optional[Any] = None
    slippage: Optional[Any] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class Policy(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    block_unlimited_approvals: bool = Field(default=False, alias="blockUnlimitedApprovals")
    block_unknown_contracts: bool = Field(default=False, alias="blockUnknownContracts")
    strict_mode: bool = Field(default=False, alias="strictMode")
    # display only, never read by scoring
    explain_more: bool = Field(default=True, alias="explainMore")


# ---- Allowance: tagged union ----
@dataclass(frozen=True)
class Unlimited:
    marker: Any

    def __str__(self) -> str:
        return str(self.marker)


@dataclass(frozen=True)
class Amount:
    value: Any

    def __str__(self) -> str:
        return str(self.value)


Allowance = Union[Unlimited, Amount]


def parse_allowance(raw: Any) -> Optional[Allowance]:
    if raw is None:
        return None
    if is_unlimited_allowance(raw):
        return Unlimited(raw)
    return Amount(raw)


class Reason(BaseModel):
    title: str
    detail: str


class RuleHit(BaseModel):
    rule_id: str
    title: str
    detail: str
    weight: int = 0
    floor: Optional[int] = None


class EvaluationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    score: int = Field(ge=0, le=100)
    verdict: Verdict
    reasons: List[Reason]
    top_signal: str = Field(alias="topSignal")
    summary: str


# ---- API bodies ----
class EvaluateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    intent: TransactionIntent
    policy: Optional[Policy] = None
    policy_pack: Optional[str] = Field(default=None, alias="policyPack")
    scenario: Optional[str] = None


class EvaluateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    result: EvaluationResult
    rule_hits: List[RuleHit] = Field(alias="ruleHits")
    warn_at: int = Field(alias="warnAt")
    block_at: int = Field(alias="blockAt")
    verdict_note: str = Field(alias="verdictNote")
    visible_reasons: List[Reason] = Field(alias="visibleReasons")


class ReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    intent: TransactionIntent
    policy: Optional[Policy] = None
    policy_pack: Optional[str] = Field(default=None, alias="policyPack")
    scenario: Optional[str] = None


class ActivityEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time: str
    scenario: str
    verdict: Verdict
    score: int
    top_signal: str = Field(alias="topSignal")


class ScenarioInfo(BaseModel):
    id: str
    name: str
    description: Optional[str] = ""
    tx: Dict[str, Any]
