"""Hold accounting across credit scopes.

Credit lives in scopes: the general pool (key ``None``) and one pool per
feature key. A feature hold is covered by that feature's credit first and
falls back on general credit; a general hold only on general credit. A draw
or a new hold is allowed only while every active hold stays covered.
"""

from collections import Counter
from dataclasses import dataclass
from typing import Any, Mapping, Sequence


@dataclass(frozen=True)
class DrawBudget:
    """How much a scope can still spend: in total, and from general credit."""

    total: int
    general: int


def general_commitment(
    pools: Mapping[str | None, int],
    holds: Mapping[str | None, int],
    feature_key: str | None = None,
) -> int:
    """General credit owed to holds, leaving ``feature_key``'s own hold out."""
    committed = holds.get(None, 0)
    for key, held in holds.items():
        if key is None or key == feature_key:
            continue
        committed += max(0, held - pools.get(key, 0))
    return committed


def draw_budget(
    pools: Mapping[str | None, int],
    holds: Mapping[str | None, int],
    feature_key: str | None,
) -> DrawBudget:
    """Largest draw (or new hold) in ``feature_key``'s scope that keeps holds covered.

    ``pools`` are live remaining credit per scope; ``holds`` active held
    amounts per scope.
    """
    general_free = max(0, pools.get(None, 0) - general_commitment(pools, holds, feature_key))
    if feature_key is None:
        return DrawBudget(total=general_free, general=general_free)

    feature_pool = pools.get(feature_key, 0)
    feature_held = holds.get(feature_key, 0)
    general_free = max(0, general_free - max(0, feature_held - feature_pool))
    return DrawBudget(
        total=general_free + max(0, feature_pool - feature_held),
        general=general_free,
    )


def plan_draws(
    batches: Sequence[Any], amount: int, budget: DrawBudget
) -> list[tuple[Any, int]]:
    """Walk ``batches`` in FIFO order taking ``amount``.

    General batches are only drawn up to ``budget.general``; credit beyond
    that backs holds and is skipped.
    """
    draws: list[tuple[Any, int]] = []
    general_left = budget.general
    still_needed = amount
    for batch in batches:
        if still_needed == 0:
            break
        take = min(batch.remaining_amount, still_needed)
        if batch.feature_key is None:
            take = min(take, general_left)
            general_left -= take
        if take > 0:
            draws.append((batch, take))
            still_needed -= take
    return draws


def scope_totals(rows) -> Counter:
    """Sum ``(scope, amount)`` rows into a per-scope counter."""
    totals: Counter = Counter()
    for feature_key, amount in rows:
        totals[feature_key] += int(amount)
    return totals
