# src/liveart/rules/rules.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Union

from liveart.errors import InvalidRule
from liveart.utils.types import VISUAL_PROPERTIES, VisualState, is_finite_number


class Operator(str, Enum):
    GT = "gt"
    LT = "lt"
    EQ = "eq"
    BETWEEN = "between"


# spellings used by the creator tool
_OPERATOR_ALIASES = {
    "gt": Operator.GT,
    "greater_than": Operator.GT,
    ">": Operator.GT,
    "lt": Operator.LT,
    "less_than": Operator.LT,
    "<": Operator.LT,
    "eq": Operator.EQ,
    "equals": Operator.EQ,
    "equal": Operator.EQ,
    "==": Operator.EQ,
    "between": Operator.BETWEEN,
}


def parse_operator(raw: Any) -> Operator:
    if isinstance(raw, Operator):
        return raw
    op = _OPERATOR_ALIASES.get(str(raw).strip().lower())
    if op is None:
        raise InvalidRule(f"unsupported operator: {raw!r}")
    return op


# ---- threshold variant ----

@dataclass(frozen=True, slots=True)
class Scalar:
    value: float


@dataclass(frozen=True, slots=True)
class Range:
    low: float
    high: float


Threshold = Union[Scalar, Range]


def parse_threshold(raw: Any, op: Operator) -> Threshold:
    """
    Scalar for gt/lt/eq, Range for between. Accepts an already-built variant,
    a number, or a 2-sequence [low, high].
    """
    if isinstance(raw, (Scalar, Range)):
        th = raw
    elif isinstance(raw, (list, tuple)):
        if len(raw) != 2:
            raise InvalidRule(f"range threshold needs exactly 2 bounds, got {len(raw)}")
        th = Range(raw[0], raw[1])
    else:
        th = Scalar(raw)

    if op is Operator.BETWEEN:
        if not isinstance(th, Range):
            raise InvalidRule("between requires a [low, high] threshold")
        if not (is_finite_number(th.low) and is_finite_number(th.high)):
            raise InvalidRule(f"malformed range bounds: {th.low!r}, {th.high!r}")
        if th.low > th.high:
            raise InvalidRule(f"range low {th.low} > high {th.high}")
        return Range(float(th.low), float(th.high))

    if not isinstance(th, Scalar):
        raise InvalidRule(f"{op.value} requires a scalar threshold")
    if not is_finite_number(th.value):
        raise InvalidRule(f"malformed threshold: {th.value!r}")
    return Scalar(float(th.value))


def threshold_to_json(th: Threshold) -> float | list[float]:
    if isinstance(th, Range):
        return [th.low, th.high]
    return th.value


# ---- rules ----

@dataclass(frozen=True, slots=True)
class Rule:
    """
    Creator-defined condition -> visual property mapping.
      - operator = gt       -> x >  threshold
                   lt       -> x <  threshold
                   eq       -> x == threshold (exact)
                   between  -> low <= x <= high
    Higher priority wins among simultaneous matches; equal priorities fall
    back to definition order.
    """
    id: str
    field: str
    operator: Operator
    threshold: Threshold
    target_property: str
    target_value: Any
    priority: int = 0
    is_active: bool = True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "field": self.field,
            "operator": self.operator.value,
            "threshold": threshold_to_json(self.threshold),
            "target_property": self.target_property,
            "target_value": self.target_value,
            "priority": self.priority,
            "is_active": self.is_active,
        }


def make_rule(
    id: str,
    field: str,
    operator: Any,
    threshold: Any,
    target_property: str,
    target_value: Any,
    priority: int = 0,
    is_active: bool = True,
) -> Rule:
    """Build and validate a single Rule. Raises InvalidRule."""
    rid = str(id) if id is not None else ""
    if not rid:
        raise InvalidRule("rule id must be non-empty")
    try:
        op = parse_operator(operator)
        th = parse_threshold(threshold, op)
    except InvalidRule as e:
        raise InvalidRule(str(e), rule_id=rid) from None

    if not field or not isinstance(field, str):
        raise InvalidRule("field must be a non-empty string", rule_id=rid)
    if target_property not in VISUAL_PROPERTIES:
        raise InvalidRule(f"unsupported target_property: {target_property!r}", rule_id=rid)
    if target_property == "color_scheme":
        if not isinstance(target_value, str) or not target_value:
            raise InvalidRule("color_scheme target must be a non-empty string", rule_id=rid)
    elif not is_finite_number(target_value):
        raise InvalidRule(f"{target_property} target must be a finite number", rule_id=rid)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise InvalidRule(f"priority must be an int, got {priority!r}", rule_id=rid)

    return Rule(
        id=rid,
        field=field,
        operator=op,
        threshold=th,
        target_property=target_property,
        target_value=target_value,
        priority=priority,
        is_active=bool(is_active),
    )


def rule_from_dict(d: dict) -> Rule:
    try:
        return make_rule(
            id=d.get("id"),
            field=d.get("field", "price"),
            operator=d["operator"],
            threshold=d.get("threshold", d.get("value")),
            target_property=d.get("target_property") or d.get("property_to_change"),
            target_value=d["target_value"] if "target_value" in d else d.get("new_value"),
            priority=d.get("priority", 0),
            is_active=d.get("is_active", True),
        )
    except KeyError as e:
        raise InvalidRule(f"missing key {e.args[0]!r}", rule_id=d.get("id")) from None


def validate_rules(rules: Iterable[Rule | dict]) -> tuple[Rule, ...]:
    """
    Normalize a rule set (dicts are parsed, Rules re-validated) and reject
    duplicate ids. Order is preserved; it is the tie-break order.
    """
    out: list[Rule] = []
    seen: set[str] = set()
    for r in rules:
        if isinstance(r, Rule):
            r = make_rule(
                r.id, r.field, r.operator, r.threshold,
                r.target_property, r.target_value, r.priority, r.is_active,
            )
        elif isinstance(r, dict):
            r = rule_from_dict(r)
        else:
            raise InvalidRule(f"not a rule: {r!r}")
        if r.id in seen:
            raise InvalidRule("duplicate rule id", rule_id=r.id)
        seen.add(r.id)
        out.append(r)
    return tuple(out)


# ---- asset definitions ----

@dataclass(frozen=True, slots=True)
class AssetDefinition:
    id: str
    feed_id: str
    base_state: VisualState
    rules: tuple[Rule, ...] = field(default_factory=tuple)
    name: str = ""

    def with_rules(self, rules: Iterable[Rule]) -> "AssetDefinition":
        return AssetDefinition(
            id=self.id, feed_id=self.feed_id, base_state=self.base_state,
            rules=tuple(rules), name=self.name,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "feed_id": self.feed_id,
            "name": self.name,
            "rules": [r.to_dict() for r in self.rules],
            "base_state": self.base_state.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "AssetDefinition":
        if not d.get("id"):
            raise InvalidRule("asset id must be non-empty")
        base = d.get("base_state") or d.get("initial_properties")
        if not base:
            raise InvalidRule(f"asset {d.get('id')!r} has no base_state")
        feed_id = d.get("feed_id") or d.get("data_source")
        if not feed_id:
            raise InvalidRule(f"asset {d.get('id')!r} has no feed_id")
        try:
            base_state = VisualState.from_dict(base)
        except KeyError as e:
            raise InvalidRule(f"asset {d.get('id')!r} base_state is missing {e.args[0]!r}") from e
        except (TypeError, ValueError) as e:
            raise InvalidRule(f"asset {d.get('id')!r} has an invalid base_state: {e}") from e
        return cls(
            id=str(d["id"]),
            feed_id=str(feed_id),
            base_state=base_state,
            rules=validate_rules(d.get("rules") or d.get("triggers") or []),
            name=str(d.get("name", "")),
        )

