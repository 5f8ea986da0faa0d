import os
import pytest
from txguard.rules import RuleEngine
from txguard.evaluation import evaluate, evaluate_with_trace
from txguard.models import Policy, NO_CRITICAL_SIGNALS

RULES = os.path.join(os.path.dirname(__file__), "..", "rules", "rules.yaml")
engine = RuleEngine(RULES)

DEFAULT = Policy()
STRICT = Policy(strict_mode=True)
ALL_ON = Policy(block_unlimited_approvals=True, block_unknown_contracts=True, strict_mode=True)


def titles(result):
    return [r.title for r in result.reasons]


def test_rule_load():
    assert len(engine.rules) == 16
    assert set(engine.policy_packs) == {"basic", "strict", "degen"}
    assert engine.policy_pack("strict").strict_mode is True
    with pytest.raises(KeyError):
        engine.policy_pack("yolo")


def test_minimal_intent_is_clean():
    r = evaluate({"type": "other"}, DEFAULT, engine)
    assert r.score == 0
    assert r.verdict == "ALLOW"
    assert r.top_signal == NO_CRITICAL_SIGNALS
    assert r.reasons == []


def test_drainer_signature_warns_under_default_thresholds():
    r = evaluate({"type": "sign", "knownDrainerPattern": True}, DEFAULT, engine)
    assert r.score == 75
    assert r.verdict == "WARN"
    assert r.top_signal == "Known drainer pattern"
    assert titles(r) == ["Signature request", "Known drainer pattern"]


def test_unlimited_approval_keeps_headline_over_unverified_spender():
    policy = Policy(block_unlimited_approvals=True)
    r = evaluate({"type": "approve", "allowance": "UNLIMITED", "spenderVerified": False}, policy, engine)
    # 45, floor 85, +25 -> clamped
    assert r.score == 100
    assert r.verdict == "BLOCK"
    assert r.top_signal == "Unlimited approval"
    assert titles(r) == ["Unlimited approval", "Policy triggered", "Unverified spender"]


def test_unlimited_approval_floor():
    r = evaluate({"type": "approve", "allowance": "MAX_UINT", "spenderVerified": True},
                 Policy(block_unlimited_approvals=True), engine)
    assert r.score == 85
    assert r.verdict == "BLOCK"


def test_unverified_spender_takes_headline_for_limited_approval():
    r = evaluate({"type": "approve", "allowance": "100", "spenderVerified": False}, DEFAULT, engine)
    assert r.score == 30
    assert r.top_signal == "Unverified spender"
    assert titles(r) == ["Limited approval", "Unverified spender"]


def test_spender_verified_only_counts_when_explicitly_false():
    for value in (None, True, "false", 0):
        r = evaluate({"type": "approve", "allowance": "1", "spenderVerified": value}, DEFAULT, engine)
        assert "Unverified spender" not in titles(r)


def test_missing_allowance_counts_as_limited():
    r = evaluate({"type": "approve"}, DEFAULT, engine)
    assert r.score == 5
    assert titles(r) == ["Limited approval"]


@pytest.mark.parametrize("marker", ["MAX_UINT", "UNLIMITED", "max_uint", str(2 ** 256 - 1), "0x" + "f" * 64, 2 ** 256 - 1])
def test_unlimited_markers(marker):
    r = evaluate({"type": "approve", "allowance": marker}, DEFAULT, engine)
    assert titles(r) == ["Unlimited approval"]
    assert r.score == 45


def test_unknown_contract_floor_and_label():
    r = evaluate({"type": "other", "contractReputation": "unknown"}, Policy(block_unknown_contracts=True), engine)
    assert r.score == 80
    assert r.verdict == "BLOCK"
    assert r.top_signal == "Unknown contract blocked"


def test_later_unconditional_rule_replaces_policy_label():
    # unknown contract blocked is set first, high value overwrites it
    intent = {"type": "other", "contractReputation": "unknown", "contractAgeDays": 2, "valueUSD": 18500}
    r = evaluate(intent, ALL_ON, engine)
    assert r.top_signal == "High value transfer"
    assert r.score == 100


def test_default_only_rules_never_replace_a_set_label():
    r = evaluate({"type": "other", "contractAgeDays": 3, "gasAnomaly": True, "upgradeable": True}, DEFAULT, engine)
    assert r.top_signal == "Very new contract"
    assert r.score == 34

    r = evaluate({"type": "other", "upgradeable": True, "gasAnomaly": True}, DEFAULT, engine)
    assert r.top_signal == "Upgradeable risk"


def test_reason_details_interpolate_values():
    r = evaluate({"type": "transfer", "contractAgeDays": 2.0, "valueUSD": 12345.5}, DEFAULT, engine)
    details = {x.title: x.detail for x in r.reasons}
    assert details["Very new contract"] == "Contract age is 2 day(s)."
    assert details["High value"] == "Estimated value: ~$12,345.5."


def test_every_fired_rule_is_listed_once_in_order():
    intent = {
        "type": "approve", "allowance": "MAX_UINT", "spenderVerified": False,
        "contractReputation": "unknown", "contractAgeDays": 1, "valueUSD": 10000,
        "upgradeable": True, "adminCanWithdraw": True, "adminCanPause": True, "gasAnomaly": True,
    }
    r, hits = evaluate_with_trace(intent, ALL_ON, engine)
    assert titles(r) == [
        "Unlimited approval", "Policy triggered", "Unverified spender", "Unknown reputation",
        "Policy triggered", "Very new contract", "High value", "Upgradeable contract",
        "Admin withdraw privileges", "Admin pause privileges", "Gas anomaly", "Strict mode",
    ]
    assert len({h.rule_id for h in hits}) == len(hits)
    assert r.top_signal == "Admin withdraw privileges"
    assert r.score == 100


def test_sign_only_flags_need_a_signature_request():
    r = evaluate({"type": "other", "domainLookalike": True, "knownDrainerPattern": True}, DEFAULT, engine)
    assert r.score == 0


def test_wrong_shaped_fields_are_ignored():
    intent = {"type": "transfer", "contractAgeDays": "3", "valueUSD": True, "upgradeable": "yes",
              "gasAnomaly": 1, "contractReputation": None}
    r = evaluate(intent, DEFAULT, engine)
    assert r.score == 0
    assert r.reasons == []
    assert engine.apply(None, DEFAULT).score == 0


def test_snake_case_mapping_is_accepted():
    r = evaluate({"type": "approve", "allowance": "MAX_UINT", "spender_verified": False}, DEFAULT, engine)
    assert r.score == 70


def test_strict_mode_never_lowers_score_or_verdict():
    order = {"ALLOW": 0, "WARN": 1, "BLOCK": 2}
    intents = [
        {"type": "sign", "domainLookalike": True},
        {"type": "approve", "allowance": "MAX_UINT"},
        {"type": "other", "contractReputation": "unknown", "contractAgeDays": 1},
        {"type": "swap", "gasAnomaly": True},
    ]
    for intent in intents:
        relaxed = evaluate(intent, DEFAULT, engine)
        strict = evaluate(intent, STRICT, engine)
        assert strict.score >= relaxed.score
        assert order[strict.verdict] >= order[relaxed.verdict]
    assert evaluate(intents[0], STRICT, engine).verdict == "WARN"


def test_same_input_same_result():
    intent = {"type": "approve", "allowance": "MAX_UINT", "contractReputation": "unknown"}
    assert evaluate(intent, ALL_ON, engine) == evaluate(intent, ALL_ON, engine)


def test_explain_more_does_not_change_scoring():
    intent = {"type": "sign", "domainLookalike": True}
    assert evaluate(intent, Policy(explain_more=False), engine) == evaluate(intent, Policy(explain_more=True), engine)


def test_bad_rule_files_fail_to_load(tmp_path):
    unknown = tmp_path / "unknown.yaml"
    unknown.write_text("rules:\n  - id: a\n    title: A\n    conditions:\n      text.regex: foo\n")
    with pytest.raises(RuntimeError):
        RuleEngine(str(unknown))

    forward = tmp_path / "forward.yaml"
    forward.write_text(
        "rules:\n"
        "  - id: a\n    title: A\n    requires: b\n    conditions:\n      intent.flag: upgradeable\n"
        "  - id: b\n    title: B\n    conditions:\n      intent.flag: gasAnomaly\n"
    )
    with pytest.raises(RuntimeError):
        RuleEngine(str(forward))

    with pytest.raises(RuntimeError):
        RuleEngine(str(tmp_path / "missing.yaml"))


def test_any_conditions_fire_on_each_alternative(tmp_path):
    path = tmp_path / "any.yaml"
    path.write_text(
        "rules:\n"
        "  - id: admin_or_gas\n"
        "    title: Admin or gas\n"
        "    conditions:\n"
        "      any:\n"
        "        - intent.flag: upgradeable\n"
        "        - intent.flag: gasAnomaly\n"
        "    weight: 7\n"
    )
    custom = RuleEngine(str(path))
    assert custom.apply({"type": "other", "gasAnomaly": True}).score == 7
    assert custom.apply({"type": "other", "upgradeable": True}).score == 7
    assert custom.apply({"type": "other", "upgradeable": True, "gasAnomaly": True}).score == 7
    assert custom.apply({"type": "other"}).hits == []


def test_any_conditions_are_checked_on_load(tmp_path):
    path = tmp_path / "bad_any.yaml"
    path.write_text(
        "rules:\n  - id: a\n    title: A\n    conditions:\n      any:\n"
        "        - intent.flag: upgradeable\n        - text.contains_any: [otp]\n"
    )
    with pytest.raises(RuntimeError):
        RuleEngine(str(path))
