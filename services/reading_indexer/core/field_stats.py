"""
Reading Indexer Field Statistics

Per-interval accumulation of one output field and the reducers that turn the
accumulated state into the aggregated value.
"""

import math
from dataclasses import dataclass
from typing import Callable, Optional

from .types import Reducer, Scalar


def coerce_number(value: Scalar) -> Optional[float]:
    """
    Numeric view of a reading, or None if it has none.

    Booleans are not numbers here, and neither are NaN or infinities since
    they cannot be written back as JSON.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


@dataclass
class FieldStat:
    """
    Accumulates the values of one field within one interval.

    `count`, `first` and `last` see every value. `sum`, `min` and `max` only
    see values that coerce to a number; `numeric_count` tracks how many did.
    """

    count: int = 0
    numeric_count: int = 0
    sum: float = 0.0
    min: float = math.inf
    max: float = -math.inf
    first: Scalar = None
    last: Scalar = None

    def add(self, value: Scalar) -> bool:
        """
        Add one value.

        Returns:
            False if the value had no numeric view (it is still counted)
        """
        if self.count == 0:
            self.first = value
        self.last = value
        self.count += 1

        number = coerce_number(value)
        if number is None:
            return False

        self.numeric_count += 1
        self.sum += number
        if number < self.min:
            self.min = number
        if number > self.max:
            self.max = number
        return True


# =============================================================================
# Reducers
# =============================================================================

def _count(stat: FieldStat) -> Scalar:
    return stat.count


def _sum(stat: FieldStat) -> Scalar:
    return stat.sum


def _min(stat: FieldStat) -> Scalar:
    return stat.min if stat.numeric_count else None


def _max(stat: FieldStat) -> Scalar:
    return stat.max if stat.numeric_count else None


def _first(stat: FieldStat) -> Scalar:
    return stat.first


def _last(stat: FieldStat) -> Scalar:
    return stat.last


def _average(stat: FieldStat) -> Scalar:
    if stat.numeric_count == 0:
        return None
    return stat.sum / stat.numeric_count


REDUCERS: dict[Reducer, Callable[[FieldStat], Scalar]] = {
    Reducer.COUNT: _count,
    Reducer.SUM: _sum,
    Reducer.MIN: _min,
    Reducer.MAX: _max,
    Reducer.FIRST: _first,
    Reducer.LAST: _last,
    Reducer.AVERAGE: _average,
    Reducer.CONSTANT: _first,
}


def reduce_stat(stat: FieldStat, reducer: Reducer, precision: int) -> Scalar:
    """
    Apply a reducer, rounding float results to `precision` decimals.

    A float result that is not finite (a sum overflowing to infinity) is
    null, since a record file has no way to hold it.
    """
    if stat.count == 0:
        return None
    value = REDUCERS[reducer](stat)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return round(value, precision)
    return value
