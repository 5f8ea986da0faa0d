import logging
import random
import yaml
from typing import Iterable, List, Optional, Tuple

from pydantic import ValidationError

from .evaluation import PolicyLike, evaluate
from .models import EvaluationResult, ScenarioInfo, TransactionIntent
from .rules import RuleEngine

logger = logging.getLogger(__name__)

# played back in this order by simulate()
DEMO_SEQUENCE = ("phishing_signature_drainer", "unlimited_approval_unknown", "new_contract_high_value")


class ScenarioCatalog:
    """Canned transaction intents, loaded from a YAML file."""

    def __init__(self, path: str):
        self.path = path
        self.scenarios: List[ScenarioInfo] = []
        self.load()

    def load(self):
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            self.scenarios = [ScenarioInfo.model_validate(s) for s in data.get("scenarios", [])]
        except (OSError, yaml.YAMLError, ValidationError) as e:
            raise RuntimeError(f"Failed to load scenarios from {self.path}: {e}") from e
        logger.info("Loaded %d scenarios from %s", len(self.scenarios), self.path)

    def get(self, scenario_id: str) -> Optional[ScenarioInfo]:
        return next((s for s in self.scenarios if s.id == scenario_id), None)

    def get_or_first(self, scenario_id: str) -> ScenarioInfo:
        if not self.scenarios:
            raise LookupError("scenario catalog is empty")
        return self.get(scenario_id) or self.scenarios[0]

    def random_pick(self, rng: Optional[random.Random] = None) -> ScenarioInfo:
        if not self.scenarios:
            raise LookupError("scenario catalog is empty")
        return (rng or random).choice(self.scenarios)

    def intent(self, scenario: ScenarioInfo) -> TransactionIntent:
        return TransactionIntent.model_validate(scenario.tx)

    def simulate(
        self,
        policy: PolicyLike = None,
        ids: Iterable[str] = DEMO_SEQUENCE,
        engine: Optional[RuleEngine] = None,
    ) -> List[Tuple[ScenarioInfo, EvaluationResult]]:
        """Evaluate scenarios one after another; unknown ids are skipped."""
        picks = [s for s in (self.get(i) for i in ids) if s is not None]
        return [(s, evaluate(self.intent(s), policy, engine)) for s in picks]
