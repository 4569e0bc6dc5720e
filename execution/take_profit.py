# SPDX-License-Identifier: MIT
"""Per-position take-profit state machine.

Each registered position carries a set of exit levels. A periodic tick
compares the latest market price against every untriggered level, closing a
share of the remaining size when a level is crossed and otherwise offering
trailing levels a tighter target in the position's favour. Levels move one way only
(``pending -> triggered``) and a position becomes inactive once its
remaining size falls to ``POSITION_EPSILON`` or below.

The crossing check runs before trailing. A trailing target is derived from
the high-water mark, and an untriggered level always sits beyond that mark,
so within :meth:`TakeProfitSystem.tick` the ratchet never tightens a level
and ``TRAILING_UPDATED`` is not emitted from the tick path.
:func:`trailing_target` remains available to hosts that trail levels
themselves.

Closing a share of a position does not place any order by itself. Hosts that
want the exits routed to the exchange pass a ``close_handler`` which receives
``(position, level, size)`` for every triggered level.
"""

from __future__ import annotations

import copy
import math
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping
from uuid import uuid4

from core.utils.clock import Clock, SystemClock
from core.utils.logging import get_logger
from core.utils.metrics import MetricsCollector, get_metrics_collector
from core.utils.scheduling import PeriodicTask
from core.utils.signals import Signal
from domain.position import PositionSide, coerce_float
from risk.sizing import parse_side

POSITION_EPSILON = 0.001
MAX_EVENT_HISTORY = 100
DEFAULT_CHECK_INTERVAL = 1.0
HIGH_VOLATILITY_CHANGE = 10.0
LOW_VOLATILITY_CHANGE = 2.0
_PERCENTAGE_TOLERANCE = 0.01


class StrategyType(str, Enum):
    FIXED = "FIXED"
    TRAILING = "TRAILING"
    SCALED = "SCALED"
    DYNAMIC = "DYNAMIC"


class TakeProfitEventType(str, Enum):
    PARTIAL_CLOSE = "PARTIAL_CLOSE"
    FULL_CLOSE = "FULL_CLOSE"
    TRAILING_UPDATED = "TRAILING_UPDATED"
    STRATEGY_CHANGED = "STRATEGY_CHANGED"


@dataclass(slots=True)
class TakeProfitLevel:
    """One exit step closing ``percentage`` of the remaining size at ``price_target``."""

    id: str
    percentage: float
    price_target: float = 0.0
    trailing_distance: float | None = None
    is_active: bool = True
    is_triggered: bool = False
    triggered_at: datetime | None = None
    triggered_price: float | None = None


@dataclass(slots=True)
class TakeProfitStrategy:
    """Template of exit levels applied to new positions.

    ``max_trailing_distance`` and ``min_trailing_distance`` bound the dynamic
    adjustment of trailing distances, both expressed in percent.
    """

    id: str
    name: str
    type: StrategyType | str
    levels: List[TakeProfitLevel]
    dynamic_adjustment: bool = False
    max_trailing_distance: float = 5.0
    min_trailing_distance: float = 1.0

    def __post_init__(self) -> None:
        if not isinstance(self.type, StrategyType):
            self.type = StrategyType(str(self.type).upper())

    def validate(self) -> None:
        """Raise :class:`ValueError` when the template cannot be applied."""

        if not self.id:
            raise ValueError("strategy id must be provided")
        if not self.levels:
            raise ValueError("strategy must define at least one level")
        if any(level.percentage <= 0 for level in self.levels):
            raise ValueError("level percentages must be positive")
        total = sum(level.percentage for level in self.levels)
        if abs(total - 100.0) > _PERCENTAGE_TOLERANCE:
            raise ValueError(f"level percentages must sum to 100, got {total:g}")
        if self.min_trailing_distance < 0 or self.max_trailing_distance < self.min_trailing_distance:
            raise ValueError("trailing distance bounds are inconsistent")


@dataclass(slots=True)
class PositionTakeProfit:
    """Mutable exit state of one open trade."""

    trade_id: str
    symbol: str
    side: PositionSide
    entry_price: float
    original_size: float
    remaining_size: float
    strategy: TakeProfitStrategy
    current_price: float
    highest_price: float | None = None
    lowest_price: float | None = None
    total_profit_realized: float = 0.0
    is_active: bool = True
    last_update: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    strategy_changes: int = 0

    @property
    def levels(self) -> List[TakeProfitLevel]:
        return self.strategy.levels

    @property
    def triggered_levels(self) -> List[TakeProfitLevel]:
        return [level for level in self.strategy.levels if level.is_triggered]

    def profit_at(self, exit_price: float, size: float) -> float:
        return (exit_price - self.entry_price) * size * self.side.direction


@dataclass(frozen=True, slots=True)
class TakeProfitEvent:
    trade_id: str
    type: TakeProfitEventType
    price: float
    size: float = 0.0
    profit: float = 0.0
    level_id: str | None = None
    reason: str = ""
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "trade_id": self.trade_id,
            "type": self.type.value,
            "level_id": self.level_id,
            "price": self.price,
            "size": self.size,
            "profit": self.profit,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class _Quote:
    price: float
    change_24h: float


CloseHandler = Callable[[PositionTakeProfit, TakeProfitLevel, float], Any]


def default_strategies() -> List[TakeProfitStrategy]:
    """Built-in templates: conservative, aggressive and balanced."""

    return [
        TakeProfitStrategy(
            id="conservative",
            name="Conservative",
            type=StrategyType.SCALED,
            levels=[
                TakeProfitLevel(id="tp1", percentage=30),
                TakeProfitLevel(id="tp2", percentage=40),
                TakeProfitLevel(id="tp3", percentage=30),
            ],
            dynamic_adjustment=False,
            max_trailing_distance=5.0,
            min_trailing_distance=2.0,
        ),
        TakeProfitStrategy(
            id="aggressive",
            name="Aggressive",
            type=StrategyType.TRAILING,
            levels=[TakeProfitLevel(id="tp1", percentage=100, trailing_distance=3.0)],
            dynamic_adjustment=True,
            max_trailing_distance=8.0,
            min_trailing_distance=1.0,
        ),
        TakeProfitStrategy(
            id="balanced",
            name="Balanced",
            type=StrategyType.SCALED,
            levels=[
                TakeProfitLevel(id="tp1", percentage=25),
                TakeProfitLevel(id="tp2", percentage=35, trailing_distance=2.0),
                TakeProfitLevel(id="tp3", percentage=40, trailing_distance=4.0),
            ],
            dynamic_adjustment=True,
            max_trailing_distance=6.0,
            min_trailing_distance=1.5,
        ),
    ]


def level_target(entry_price: float, side: PositionSide, index: int) -> float:
    """Target for the ``index``-th level: ``3 + 2 * index`` percent past entry."""

    gain = (3.0 + 2.0 * index) / 100.0
    return entry_price * (1.0 + gain * side.direction)


def trailing_target(
    side: PositionSide, current_target: float, water_mark: float, distance_pct: float
) -> float:
    """Ratchet ``current_target`` towards ``water_mark`` minus ``distance_pct``.

    The result never moves against the position: it only rises for longs and
    only falls for shorts.
    """

    if side is PositionSide.LONG:
        return max(current_target, water_mark * (1.0 - distance_pct / 100.0))
    return min(current_target, water_mark * (1.0 + distance_pct / 100.0))


class TakeProfitSystem:
    """Evaluate exit levels for registered positions on a fixed interval."""

    def __init__(
        self,
        *,
        strategies: Iterable[TakeProfitStrategy] | None = None,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        close_handler: CloseHandler | None = None,
        metrics: MetricsCollector | None = None,
        clock: Clock | None = None,
        max_events: int = MAX_EVENT_HISTORY,
    ) -> None:
        self._strategies: Dict[str, TakeProfitStrategy] = {}
        for strategy in strategies if strategies is not None else default_strategies():
            strategy.validate()
            self._strategies[strategy.id] = strategy
        self._positions: Dict[str, PositionTakeProfit] = {}
        self._quotes: Dict[str, _Quote] = {}
        self._events: Deque[TakeProfitEvent] = deque(maxlen=max(1, int(max_events)))
        self._signal = Signal("take_profit.events")
        self._check_interval = float(check_interval)
        self._close_handler = close_handler
        self._metrics = metrics or get_metrics_collector()
        self._clock = clock or SystemClock()
        self._logger = get_logger(__name__)
        self._task: PeriodicTask | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and self._task.running

    @property
    def check_interval(self) -> float:
        return self._check_interval

    def set_close_handler(self, handler: CloseHandler | None) -> None:
        self._close_handler = handler

    # ------------------------------------------------------------------
    # Scheduling
    def start(self) -> None:
        """Begin evaluating positions every ``check_interval`` seconds."""

        if self.running:
            return
        self._task = PeriodicTask(
            "take-profit", self._check_interval, self.tick, logger=self._logger
        )
        self._task.start()
        self._logger.info("Take profit system started", interval=self._check_interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        await task.stop()
        self._logger.info("Take profit system stopped", iterations=task.iterations)

    # ------------------------------------------------------------------
    # Strategies
    def get_strategy(self, strategy_id: str) -> TakeProfitStrategy | None:
        strategy = self._strategies.get(strategy_id)
        return copy.deepcopy(strategy) if strategy is not None else None

    def get_strategies(self) -> List[TakeProfitStrategy]:
        return [copy.deepcopy(strategy) for strategy in self._strategies.values()]

    def add_custom_strategy(self, strategy: TakeProfitStrategy) -> bool:
        """Register ``strategy``; invalid or duplicate templates are refused."""

        try:
            strategy.validate()
        except ValueError as exc:
            self._logger.warning("Rejected take profit strategy", strategy=strategy.id, error=str(exc))
            return False
        if strategy.id in self._strategies:
            self._logger.warning("Take profit strategy already registered", strategy=strategy.id)
            return False
        self._strategies[strategy.id] = copy.deepcopy(strategy)
        return True

    def update_strategy(self, trade_id: str, strategy_name: str) -> bool:
        """Switch an active position to another strategy.

        Triggered levels are kept as history; untriggered ones are replaced by
        the new template's levels, re-targeted from the entry price.
        """

        position = self._positions.get(trade_id)
        template = self._strategies.get(strategy_name)
        if position is None or not position.is_active or template is None:
            return False
        if position.strategy.id == template.id:
            return False

        position.strategy_changes += 1
        triggered = position.triggered_levels
        taken_ids = {level.id for level in triggered}
        fresh = self._instantiate_levels(template, position.side, position.entry_price, None)
        for level in fresh:
            if level.id in taken_ids:
                level.id = f"{level.id}.{position.strategy_changes}"
        previous = position.strategy.id
        position.strategy = replace(copy.deepcopy(template), levels=triggered + fresh)
        self._record_event(
            TakeProfitEvent(
                trade_id=trade_id,
                type=TakeProfitEventType.STRATEGY_CHANGED,
                price=position.current_price,
                reason=f"Strategy changed from {previous} to {template.id}",
                timestamp=self._clock.now(),
            )
        )
        return True

    # ------------------------------------------------------------------
    # Positions
    def add_position(
        self,
        trade_id: str,
        symbol: str,
        side: PositionSide | str,
        entry_price: float,
        size: float,
        strategy_name: str = "balanced",
        take_profit_price: float | None = None,
    ) -> PositionTakeProfit | None:
        """Register a trade for exit management and return a snapshot of it.

        Returns ``None`` (after logging) for an unknown strategy, an
        unparseable side or a non-positive price or size.
        """

        template = self._strategies.get(strategy_name)
        resolved_side = parse_side(side)
        entry = coerce_float(entry_price)
        amount = coerce_float(size)
        if template is None:
            self._logger.warning("Unknown take profit strategy", trade_id=trade_id, strategy=strategy_name)
            return None
        if resolved_side is None or entry <= 0 or amount <= 0 or not symbol:
            self._logger.warning(
                "Invalid take profit position",
                trade_id=trade_id,
                symbol=symbol,
                side=str(side),
                entry_price=entry_price,
                size=size,
            )
            return None

        explicit = coerce_float(take_profit_price) if take_profit_price is not None else None
        position = PositionTakeProfit(
            trade_id=trade_id,
            symbol=symbol,
            side=resolved_side,
            entry_price=entry,
            original_size=amount,
            remaining_size=amount,
            strategy=replace(
                copy.deepcopy(template),
                levels=self._instantiate_levels(template, resolved_side, entry, explicit),
            ),
            current_price=entry,
            last_update=self._clock.now(),
        )
        self._positions[trade_id] = position
        self._logger.info(
            "Added take profit position",
            trade_id=trade_id,
            symbol=symbol,
            side=resolved_side.value,
            strategy=template.id,
            targets=[level.price_target for level in position.levels],
        )
        return copy.deepcopy(position)

    def remove_position(self, trade_id: str) -> bool:
        return self._positions.pop(trade_id, None) is not None

    def get_position(self, trade_id: str) -> PositionTakeProfit | None:
        position = self._positions.get(trade_id)
        return copy.deepcopy(position) if position is not None else None

    def get_active_positions(self) -> List[PositionTakeProfit]:
        return [copy.deepcopy(p) for p in self._positions.values() if p.is_active]

    @staticmethod
    def _instantiate_levels(
        template: TakeProfitStrategy,
        side: PositionSide,
        entry_price: float,
        explicit_price: float | None,
    ) -> List[TakeProfitLevel]:
        single = len(template.levels) == 1
        levels = []
        for index, level in enumerate(template.levels):
            if explicit_price and explicit_price > 0 and single:
                target = explicit_price
            else:
                target = level_target(entry_price, side, index)
            levels.append(
                replace(
                    level,
                    price_target=target,
                    is_triggered=False,
                    triggered_at=None,
                    triggered_price=None,
                )
            )
        return levels

    # ------------------------------------------------------------------
    # Market data and evaluation
    def update_market_data(self, symbol: str, price: float, change_24h: float = 0.0) -> None:
        value = coerce_float(price)
        if value <= 0:
            self._logger.debug("Ignored non-positive market price", symbol=symbol, price=price)
            return
        self._quotes[symbol] = _Quote(price=value, change_24h=coerce_float(change_24h))

    def update_market_snapshot(self, market_data: Iterable[Mapping[str, Any] | Any]) -> None:
        """Feed a batch of tickers (mappings or objects with ``symbol``/``price``)."""

        for item in market_data:
            if isinstance(item, Mapping):
                symbol = item.get("symbol")
                price = item.get("price")
                change = item.get("change_24h", 0.0)
            else:
                symbol = getattr(item, "symbol", None)
                price = getattr(item, "price", None)
                change = getattr(item, "change_24h", 0.0)
            if symbol:
                self.update_market_data(str(symbol), price, change)

    def tick(self) -> List[TakeProfitEvent]:
        """Evaluate every active position once and return the events produced."""

        produced: List[TakeProfitEvent] = []
        for position in list(self._positions.values()):
            if not position.is_active:
                continue
            quote = self._quotes.get(position.symbol)
            if quote is None:
                continue
            produced.extend(self._evaluate(position, quote))
        return produced

    def _evaluate(self, position: PositionTakeProfit, quote: _Quote) -> List[TakeProfitEvent]:
        events: List[TakeProfitEvent] = []
        price = quote.price
        position.current_price = price
        position.last_update = self._clock.now()
        if position.side is PositionSide.LONG:
            position.highest_price = max(position.highest_price or price, price)
        else:
            position.lowest_price = min(position.lowest_price or price, price)

        for level in position.levels:
            if not position.is_active:
                break
            if not level.is_active or level.is_triggered:
                continue
            if self._crossed(position, level, price):
                events.append(self._trigger(position, level))
            elif level.trailing_distance:
                event = self._trail(position, level)
                if event is not None:
                    events.append(event)

        if position.is_active and position.strategy.dynamic_adjustment:
            self._adjust_trailing(position, quote.change_24h)
        return events

    @staticmethod
    def _crossed(position: PositionTakeProfit, level: TakeProfitLevel, price: float) -> bool:
        if position.side is PositionSide.LONG:
            return price >= level.price_target
        return price <= level.price_target

    def _trigger(self, position: PositionTakeProfit, level: TakeProfitLevel) -> TakeProfitEvent:
        size = position.remaining_size * level.percentage / 100.0
        exit_price = level.price_target
        profit = position.profit_at(exit_price, size)
        now = self._clock.now()

        level.is_triggered = True
        level.triggered_at = now
        level.triggered_price = exit_price
        position.remaining_size = max(position.remaining_size - size, 0.0)
        position.total_profit_realized += profit

        full_close = position.remaining_size <= POSITION_EPSILON
        if full_close:
            position.is_active = False
        event = TakeProfitEvent(
            trade_id=position.trade_id,
            type=TakeProfitEventType.FULL_CLOSE if full_close else TakeProfitEventType.PARTIAL_CLOSE,
            level_id=level.id,
            price=exit_price,
            size=size,
            profit=profit,
            reason=f"Take profit level {level.id} triggered at {exit_price:.2f}",
            timestamp=now,
        )
        self._logger.info(
            "Take profit triggered",
            trade_id=position.trade_id,
            symbol=position.symbol,
            level_id=level.id,
            size=size,
            price=exit_price,
            remaining_size=position.remaining_size,
        )
        self._notify_close(position, level, size)
        self._record_event(event)
        return event

    def _trail(self, position: PositionTakeProfit, level: TakeProfitLevel) -> TakeProfitEvent | None:
        if position.side is PositionSide.LONG:
            water_mark = position.highest_price or position.current_price
        else:
            water_mark = position.lowest_price or position.current_price
        target = trailing_target(position.side, level.price_target, water_mark, level.trailing_distance or 0.0)
        if math.isclose(target, level.price_target, rel_tol=0.0, abs_tol=1e-12):
            return None
        level.price_target = target
        event = TakeProfitEvent(
            trade_id=position.trade_id,
            type=TakeProfitEventType.TRAILING_UPDATED,
            level_id=level.id,
            price=target,
            reason=f"Trailing target updated to {target:.2f}",
            timestamp=self._clock.now(),
        )
        self._record_event(event)
        return event

    @staticmethod
    def _adjust_trailing(position: PositionTakeProfit, change_24h: float) -> None:
        volatility = abs(change_24h)
        strategy = position.strategy
        for level in strategy.levels:
            if not level.trailing_distance or level.is_triggered:
                continue
            if volatility > HIGH_VOLATILITY_CHANGE:
                level.trailing_distance = min(level.trailing_distance * 1.5, strategy.max_trailing_distance)
            elif volatility < LOW_VOLATILITY_CHANGE:
                level.trailing_distance = max(level.trailing_distance * 0.8, strategy.min_trailing_distance)

    def _notify_close(self, position: PositionTakeProfit, level: TakeProfitLevel, size: float) -> None:
        if self._close_handler is None:
            return
        try:
            self._close_handler(copy.deepcopy(position), copy.deepcopy(level), size)
        except Exception:
            self._logger.exception(
                "Take profit close handler failed", trade_id=position.trade_id, level_id=level.id
            )

    # ------------------------------------------------------------------
    # Events
    def _record_event(self, event: TakeProfitEvent) -> None:
        self._events.appendleft(event)
        self._metrics.record_take_profit_event(event.type.value, event.profit)
        self._signal.emit(event)

    def get_events(self, limit: int | None = 20) -> List[TakeProfitEvent]:
        events = list(self._events)
        return events if limit is None else events[: max(0, int(limit))]

    def subscribe(self, callback: Callable[[TakeProfitEvent], Any]) -> Callable[[], None]:
        """Call ``callback`` with every new event; returns an unsubscribe callable."""

        return self._signal.connect(callback)


__all__ = [
    "CloseHandler",
    "DEFAULT_CHECK_INTERVAL",
    "POSITION_EPSILON",
    "PositionTakeProfit",
    "StrategyType",
    "TakeProfitEvent",
    "TakeProfitEventType",
    "TakeProfitLevel",
    "TakeProfitStrategy",
    "TakeProfitSystem",
    "default_strategies",
    "level_target",
    "trailing_target",
]
