import logging
import os
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse

from .activity import ActivityLog
from .evaluation import DEFAULT_RULES_PATH, evaluate_with_trace
from .feature_extractors import closest_known_domain
from .models import (
    ActivityEntry, EvaluateRequest, EvaluateResponse, Policy, ReportRequest,
    ScenarioInfo, TransactionIntent,
)
from .report import build_report, visible_reasons
from .rules import RuleEngine
from .scenarios import DEMO_SEQUENCE, ScenarioCatalog
from .verdict import VERDICT_NOTES, thresholds_for

# ------------------------------------------------------------------
#  Configuration
# ------------------------------------------------------------------
RULES_PATH = os.getenv("RULES_PATH", DEFAULT_RULES_PATH)
SCENARIOS_PATH = os.getenv(
    "SCENARIOS_PATH",
    os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "scenarios.yaml")
)
ACTIVITY_LOG_LIMIT = int(os.getenv("ACTIVITY_LOG_LIMIT", "50"))
LOOKALIKE_AUTODETECT = os.getenv("LOOKALIKE_AUTODETECT", "").strip().lower() in {"1", "true", "yes", "on"}
LOOKALIKE_THRESHOLD = float(os.getenv("LOOKALIKE_THRESHOLD", "0.9"))

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(title="Transaction Risk Guard", version="1.0.0")

# ------------------------------------------------------------------
#  Core Engine + Catalog
# ------------------------------------------------------------------
engine = RuleEngine(RULES_PATH)
catalog = ScenarioCatalog(SCENARIOS_PATH)
activity = ActivityLog(ACTIVITY_LOG_LIMIT)


@app.exception_handler(RequestValidationError)
async def invalid_input(request: Request, exc: RequestValidationError):
    logger.warning("invalid input on %s: %d error(s)", request.url.path, len(exc.errors()))
    errors = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": "Invalid input", "errors": errors})

# ------------------------------------------------------------------
#  API Routes
# ------------------------------------------------------------------
@app.get("/health")
def health():
    return {"ok": True, "rules_loaded": len(engine.rules)}


@app.get("/rules")
def get_rules():
    return [r.model_dump() for r in engine.rules]


@app.post("/rules/reload")
def reload_rules():
    engine.load_rules()
    logger.info("rules reloaded from %s", engine.rules_path)
    return {"reloaded": True, "count": len(engine.rules)}


@app.get("/policy-packs")
def get_policy_packs():
    return {name: p.model_dump(by_alias=True) for name, p in engine.policy_packs.items()}


@app.get("/scenarios", response_model=List[ScenarioInfo])
def list_scenarios():
    return catalog.scenarios


@app.get("/scenarios/{scenario_id}", response_model=ScenarioInfo)
def get_scenario(scenario_id: str):
    scenario = catalog.get(scenario_id)
    if scenario is None:
        raise HTTPException(status_code=404, detail=f"Unknown scenario: {scenario_id}")
    return scenario


@app.post("/evaluate", response_model=EvaluateResponse)
def evaluate(req: EvaluateRequest):
    policy = resolve_policy(req.policy, req.policy_pack)
    return run_evaluation(req.intent, policy, req.scenario or "Custom")


@app.post("/scenarios/{scenario_id}/evaluate", response_model=EvaluateResponse)
def evaluate_scenario(scenario_id: str, policy: Optional[Policy] = None, pack: Optional[str] = None):
    scenario = catalog.get(scenario_id)
    if scenario is None:
        raise HTTPException(status_code=404, detail=f"Unknown scenario: {scenario_id}")
    return run_evaluation(catalog.intent(scenario), resolve_policy(policy, pack), scenario.name)


@app.post("/simulate", response_model=List[EvaluateResponse])
def simulate(policy: Optional[Policy] = None, pack: Optional[str] = None):
    resolved = resolve_policy(policy, pack)
    picks = [s for s in (catalog.get(i) for i in DEMO_SEQUENCE) if s is not None]
    return [run_evaluation(catalog.intent(s), resolved, s.name) for s in picks]


@app.post("/report", response_class=PlainTextResponse)
def report(req: ReportRequest):
    intent = prepare_intent(req.intent)
    policy = resolve_policy(req.policy, req.policy_pack)
    result, _ = evaluate_with_trace(intent, policy, engine)
    return build_report(intent, result, req.scenario or "Custom")


@app.get("/activity", response_model=List[ActivityEntry])
def get_activity(limit: int = 10):
    return activity.recent(limit)

# ------------------------------------------------------------------
#  Helper Functions
# ------------------------------------------------------------------
def resolve_policy(policy: Optional[Policy], pack: Optional[str]) -> Policy:
    """An explicit policy wins over a named pack; neither means all toggles off."""
    if policy is not None:
        return policy
    if pack is None:
        return Policy()
    try:
        return engine.policy_pack(pack)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown policy pack: {pack}")


def prepare_intent(intent: TransactionIntent) -> TransactionIntent:
    if not LOOKALIKE_AUTODETECT:
        return intent
    return mark_lookalike(intent, engine.known_domains, LOOKALIKE_THRESHOLD)


def mark_lookalike(intent: TransactionIntent, known_domains: List[str], threshold: float) -> TransactionIntent:
    """Fill in domainLookalike for a sign request when the caller left it unset."""
    if intent.type != "sign" or intent.domain_lookalike is not None or not isinstance(intent.domain, str):
        return intent
    target = closest_known_domain(intent.domain, known_domains, threshold)
    if target is None:
        return intent
    logger.info("domain %s looks like %s", intent.domain, target)
    return intent.model_copy(update={"domain_lookalike": True})


def run_evaluation(intent: TransactionIntent, policy: Policy, scenario: str) -> EvaluateResponse:
    intent = prepare_intent(intent)
    result, hits = evaluate_with_trace(intent, policy, engine)
    activity.record(scenario, result)
    warn_at, block_at = thresholds_for(policy)
    return EvaluateResponse(
        result=result,
        rule_hits=hits,
        warn_at=warn_at,
        block_at=block_at,
        verdict_note=VERDICT_NOTES[result.verdict],
        visible_reasons=visible_reasons(result, policy),
    )
