"""Nelson rules — the fixed catalog of control-chart checks.

Each rule is a named predicate over a series' baseline and its mutable
RuleState. Rules keep hand-maintained counters (and tiny fixed rings for
Rule5/Rule6) so every sample is evaluated in O(1) without re-scanning
history.

Rules are always evaluated in catalog order and never short-circuited, so
each rule's counters stay current regardless of the other rules' outcomes.

Reference: Lloyd S. Nelson, "The Shewhart Control Chart — Tests for Special
           Causes", Journal of Quality Technology 16(4), 1984.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Callable

from ..exceptions import ConfigurationError
from .baseline import Baseline

ABOVE = 1
BELOW = -1
NEITHER = 0


@dataclass
class RuleState:
    """Running counters for every rule of one series."""

    rule2_count: int = 0
    rule3_count: int = 0
    rule3_previous: float | None = None
    rule4_count: int = 0
    rule4_previous: float | None = None
    rule4_direction: str = ""
    rule5_last_three: deque[int] = field(default_factory=lambda: deque(maxlen=3))
    rule5_above: int = 0
    rule5_below: int = 0
    rule6_last_five: deque[int] = field(default_factory=lambda: deque(maxlen=5))
    rule6_above: int = 0
    rule6_below: int = 0
    rule7_count: int = 0
    rule8_count: int = 0


Check = Callable[[RuleState, Baseline, float], bool]


@dataclass(frozen=True)
class Rule:
    """A named Nelson rule.

    Attributes:
        name:        Stable identifier, also used as the ``rule`` metric label.
        description: Human-readable statement of the pattern.
        check:       ``check(state, baseline, value) -> bool``; updates the
                     rule's counters in state and reports a violation.
    """

    name: str
    description: str
    check: Check = field(repr=False, compare=False)

    def __call__(self, state: RuleState, baseline: Baseline, value: float) -> bool:
        return self.check(state, baseline, value)

    def __str__(self) -> str:
        return self.name


def _classify(value: float, mean: float, distance: float) -> int:
    if abs(value - mean) > distance:
        return ABOVE if value > mean else BELOW
    return NEITHER


def _push(ring: deque[int], mark: int, above: int, below: int) -> tuple[int, int]:
    """Append mark to a full-capacity ring and return the updated counts."""
    if len(ring) == ring.maxlen:
        evicted = ring[0]
        if evicted == ABOVE:
            above -= 1
        elif evicted == BELOW:
            below -= 1
    ring.append(mark)
    if mark == ABOVE:
        above += 1
    elif mark == BELOW:
        below += 1
    return above, below


def _rule1(state: RuleState, baseline: Baseline, value: float) -> bool:
    if baseline.standard_deviation == 0:
        return False
    return abs(value - baseline.mean) > baseline.three_deviations


def _rule2(state: RuleState, baseline: Baseline, value: float) -> bool:
    if value > baseline.mean:
        state.rule2_count = state.rule2_count + 1 if state.rule2_count > 0 else 1
    elif value < baseline.mean:
        state.rule2_count = state.rule2_count - 1 if state.rule2_count < 0 else -1
    else:
        state.rule2_count = 0
    return abs(state.rule2_count) >= 9


def _rule3(state: RuleState, baseline: Baseline, value: float) -> bool:
    previous = state.rule3_previous
    state.rule3_previous = value
    if previous is None:
        state.rule3_count = 0
        return False

    if value > previous:
        state.rule3_count = state.rule3_count + 1 if state.rule3_count > 0 else 1
    elif value < previous:
        state.rule3_count = state.rule3_count - 1 if state.rule3_count < 0 else -1
    else:
        state.rule3_count = 0
    return abs(state.rule3_count) >= 6


def _rule4(state: RuleState, baseline: Baseline, value: float) -> bool:
    previous = state.rule4_previous
    state.rule4_previous = value
    if previous is None or value == previous:
        state.rule4_direction = "="
        state.rule4_count = 0
        return False

    direction = ">" if value > previous else "<"
    if direction == state.rule4_direction:
        state.rule4_count = 0
    else:
        state.rule4_count += 1
    state.rule4_direction = direction
    return state.rule4_count >= 14


def _rule5(state: RuleState, baseline: Baseline, value: float) -> bool:
    if baseline.standard_deviation == 0:
        return False
    mark = _classify(value, baseline.mean, baseline.two_deviations)
    state.rule5_above, state.rule5_below = _push(
        state.rule5_last_three, mark, state.rule5_above, state.rule5_below
    )
    return state.rule5_above >= 2 or state.rule5_below >= 2


def _rule6(state: RuleState, baseline: Baseline, value: float) -> bool:
    if baseline.standard_deviation == 0:
        return False
    mark = _classify(value, baseline.mean, baseline.standard_deviation)
    state.rule6_above, state.rule6_below = _push(
        state.rule6_last_five, mark, state.rule6_above, state.rule6_below
    )
    return state.rule6_above >= 4 or state.rule6_below >= 4


def _rule7(state: RuleState, baseline: Baseline, value: float) -> bool:
    # A flat line sitting exactly on the mean is not counted.
    if baseline.standard_deviation == 0 or value == baseline.mean:
        state.rule7_count = 0
        return False
    if abs(value - baseline.mean) <= baseline.standard_deviation:
        state.rule7_count += 1
    else:
        state.rule7_count = 0
    return state.rule7_count >= 15


def _rule8(state: RuleState, baseline: Baseline, value: float) -> bool:
    # Only the distance is checked; the "both directions" clause of the
    # description is not enforced.
    if baseline.standard_deviation == 0:
        return False
    if abs(value - baseline.mean) > baseline.standard_deviation:
        state.rule8_count += 1
    else:
        state.rule8_count = 0
    return state.rule8_count >= 8


RULE1 = Rule(
    "Rule1",
    "One point is more than 3 standard deviations from the mean.",
    _rule1,
)
RULE2 = Rule(
    "Rule2",
    "Nine (or more) points in a row are on the same side of the mean.",
    _rule2,
)
RULE3 = Rule(
    "Rule3",
    "Six (or more) points in a row are continually increasing (or decreasing).",
    _rule3,
)
RULE4 = Rule(
    "Rule4",
    "Fourteen (or more) points in a row alternate in direction, increasing then decreasing.",
    _rule4,
)
RULE5 = Rule(
    "Rule5",
    "At least 2 of 3 points in a row are > 2 standard deviations from the mean in the same direction.",
    _rule5,
)
RULE6 = Rule(
    "Rule6",
    "At least 4 of 5 points in a row are > 1 standard deviation from the mean in the same direction.",
    _rule6,
)
RULE7 = Rule(
    "Rule7",
    "Fifteen points in a row are all within 1 standard deviation of the mean on either side of the mean.",
    _rule7,
)
RULE8 = Rule(
    "Rule8",
    "Eight points in a row exist, but none within 1 standard deviation of the mean "
    "and the points are in both directions from the mean.",
    _rule8,
)

ALL_RULES: tuple[Rule, ...] = (RULE1, RULE2, RULE3, RULE4, RULE5, RULE6, RULE7, RULE8)

# Rule7 is left out: a well-behaved metric with little variance will sit
# within 1σ for fifteen points and trip it constantly.
COMMON_RULES: tuple[Rule, ...] = tuple(r for r in ALL_RULES if r is not RULE7)

PRESETS: dict[str, tuple[Rule, ...]] = {
    "all": ALL_RULES,
    "common": COMMON_RULES,
}

# Longest look-back any rule needs (Rule7).
MAX_SAMPLES = 15


def get_rule(name: str) -> Rule | None:
    """Look up a catalog rule by name (case-insensitive)."""
    wanted = name.strip().lower()
    for rule in ALL_RULES:
        if rule.name.lower() == wanted:
            return rule
    return None


def resolve_rules(selection: str) -> tuple[Rule, ...]:
    """Turn ``"all"``, ``"common"`` or ``"Rule1,Rule3"`` into catalog-ordered rules.

    Raises ConfigurationError for unknown names or an empty selection.
    """
    key = selection.strip().lower()
    if key in PRESETS:
        return PRESETS[key]

    chosen: set[str] = set()
    for raw in selection.split(","):
        if not raw.strip():
            continue
        rule = get_rule(raw)
        if rule is None:
            known = ", ".join([*PRESETS, *(r.name for r in ALL_RULES)])
            raise ConfigurationError(f"unknown rule {raw.strip()!r} (known: {known})")
        chosen.add(rule.name)
    if not chosen:
        raise ConfigurationError("rule selection is empty")
    return tuple(r for r in ALL_RULES if r.name in chosen)
