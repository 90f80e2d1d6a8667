from __future__ import annotations

from typing import Optional

from liveart.rules.rules import AssetDefinition, Operator, Range, Rule, Scalar
from liveart.utils.types import PRIMARY_FIELDS, FeedValue


def rule_matches(rule: Rule, value: FeedValue, *, use_confidence: bool = True) -> bool:
    """
    Operator/threshold test for one rule against one snapshot.

    Confidence (when present and enabled) only applies to the primary field and
    never to eq. It is conservative: the whole band [x - c, x + c] must pass.
    """
    if not rule.is_active:
        return False
    x = value.field(rule.field)
    if x is None:
        return False

    slack = 0.0
    if use_confidence and rule.field in PRIMARY_FIELDS and value.confidence:
        slack = abs(value.confidence)

    op = rule.operator
    th = rule.threshold
    if op is Operator.EQ:
        assert isinstance(th, Scalar)
        return x == th.value
    if op is Operator.GT:
        assert isinstance(th, Scalar)
        return x - slack > th.value
    if op is Operator.LT:
        assert isinstance(th, Scalar)
        return x + slack < th.value
    if op is Operator.BETWEEN:
        assert isinstance(th, Range)
        return th.low <= x - slack and x + slack <= th.high
    raise ValueError(f"unsupported operator: {op!r}")


def evaluate(
    defn: AssetDefinition,
    value: FeedValue,
    *,
    use_confidence: bool = True,
) -> Optional[Rule]:
    """
    Pick the winning rule for `value`, or None when nothing matches (the asset
    then resolves to its base state).

    Winner = highest priority; ties go to the earliest-defined rule. The scan
    keeps the first rule seen at the best priority, so the result does not
    depend on anything but (rules, value).
    """
    best: Optional[Rule] = None
    for rule in defn.rules:
        if not rule_matches(rule, value, use_confidence=use_confidence):
            continue
        if best is None or rule.priority > best.priority:
            best = rule
    return best


def matching_rules(
    defn: AssetDefinition,
    value: FeedValue,
    *,
    use_confidence: bool = True,
) -> list[Rule]:
    """
    All matching rules in winner-first order (priority desc, definition order asc).
    Handy for creator previews; evaluate() returns the head of this list.
    """
    hits = [
        (i, r) for i, r in enumerate(defn.rules)
        if rule_matches(r, value, use_confidence=use_confidence)
    ]
    hits.sort(key=lambda t: (-t[1].priority, t[0]))
    return [r for _, r in hits]
