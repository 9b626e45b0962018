"""
Trade Population - Which records count as trades for win-rate style metrics.

A multi-leg strategy counts as one trade and its legs never count on their
own. Built in two passes over read-only inputs:

    1. resolve_strategy_pl: counted strategy id -> realized P&L (immutable)
    2. standalone_positions: positions with realized P&L and no strategy
"""

from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import trading_dashboard.core.models.domain as dm
from trading_dashboard.services.realized_pl import adjusted_realized_pl


def _legs_by_strategy(positions: Sequence[dm.Position],
                      asset_type: Optional[dm.AssetType]) -> Dict[str, List[dm.Position]]:
    legs: Dict[str, List[dm.Position]] = {}
    for p in positions:
        if not p.strategy_id:
            continue
        if asset_type is not None and p.asset_type != asset_type:
            continue
        legs.setdefault(p.strategy_id, []).append(p)
    return legs


def resolve_strategy_pl(strategies: Sequence[dm.Strategy],
                        positions: Sequence[dm.Position],
                        asset_type: Optional[dm.AssetType] = None) -> Mapping[str, Decimal]:
    """
    Counted strategies and the P&L each contributes.

    A strategy counts when it is no longer open, when it carries realized
    P&L, or when it is still open but every leg is terminal and the legs'
    P&L sums to nonzero (that sum is then its P&L). With an asset type,
    only strategies having at least one leg of that type are considered.
    """
    legs = _legs_by_strategy(positions, asset_type)
    resolved: Dict[str, Decimal] = {}

    for strategy in strategies:
        strategy_legs = legs.get(strategy.id, [])
        if asset_type is not None and not strategy_legs:
            continue

        if not strategy.is_open or strategy.realized_pl != 0:
            resolved[strategy.id] = strategy.realized_pl
            continue

        if strategy_legs and all(leg.is_terminal for leg in strategy_legs):
            legs_pl = sum((adjusted_realized_pl(leg) for leg in strategy_legs), dm.ZERO)
            if legs_pl != 0:
                resolved[strategy.id] = legs_pl

    return MappingProxyType(resolved)


def standalone_positions(positions: Sequence[dm.Position],
                         asset_type: Optional[dm.AssetType] = None) -> Tuple[dm.Position, ...]:
    """Positions with realized P&L that are not legs of any strategy"""
    return tuple(
        p for p in positions
        if p.has_realized_pl
        and not p.strategy_id
        and (asset_type is None or p.asset_type == asset_type)
    )


@dataclass(frozen=True)
class TradePopulation:
    """Counted strategies and standalone positions"""
    strategy_pl: Mapping[str, Decimal]
    strategies: Tuple[dm.Strategy, ...]
    positions: Tuple[dm.Position, ...]

    @classmethod
    def build(cls, positions: Sequence[dm.Position], strategies: Sequence[dm.Strategy],
              asset_type: Optional[dm.AssetType] = None) -> 'TradePopulation':
        strategy_pl = resolve_strategy_pl(strategies, positions, asset_type)
        counted = tuple(s for s in strategies if s.id in strategy_pl)
        return cls(
            strategy_pl=strategy_pl,
            strategies=counted,
            positions=standalone_positions(positions, asset_type),
        )

    def trades(self) -> List[dm.Trade]:
        return (
            [dm.Trade.from_strategy(s, self.strategy_pl[s.id]) for s in self.strategies]
            + [dm.Trade.from_position(p, adjusted_realized_pl(p)) for p in self.positions]
        )

    @property
    def realized_pl(self) -> Decimal:
        return sum((t.realized_pl for t in self.trades()), dm.ZERO)

    def __len__(self) -> int:
        return len(self.strategies) + len(self.positions)
