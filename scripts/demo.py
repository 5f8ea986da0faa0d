import os, sys
from txguard.evaluation import InvalidIntentError, default_engine, evaluate, parse_intent
from txguard.report import build_report
from txguard.scenarios import ScenarioCatalog

BASE = os.path.dirname(os.path.dirname(__file__))
catalog = ScenarioCatalog(os.path.join(BASE, "data", "scenarios.yaml"))
engine = default_engine()

# usage: demo.py [pack] [scenario_id | random | intent.json]
pack = sys.argv[1] if len(sys.argv) > 1 else "basic"
policy = engine.policy_pack(pack)
target = sys.argv[2] if len(sys.argv) > 2 else None

if target is None:
    print(f"POLICY PACK: {pack} {policy.model_dump(by_alias=True)}")
    for scenario, result in catalog.simulate(policy, engine=engine):
        print(f"{scenario.name:45s} {result.verdict:5s} {result.score:3d}  {result.top_signal}")
        print("   ", result.summary)
    sys.exit(0)

if os.path.isfile(target):
    with open(target, "r", encoding="utf-8") as f:
        try:
            intent = parse_intent(f.read())
        except InvalidIntentError as e:
            print("Invalid input:", e.errors)
            sys.exit(1)
    name = os.path.basename(target)
else:
    scenario = catalog.random_pick() if target == "random" else catalog.get_or_first(target)
    intent, name = catalog.intent(scenario), scenario.name

print(build_report(intent, evaluate(intent, policy, engine), name))
