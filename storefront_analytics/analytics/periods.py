"""报表时间窗口解析

所有窗口都是左闭右开的 [start, end)，时间统一为UTC。
"""
import math
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

from ..data.models import to_utc

logger = logging.getLogger(__name__)

PERIODS = ('day', 'week', 'month', 'year', 'custom')

PERIOD_LABELS = {
    'day': 'Today',
    'week': 'This Week',
    'month': 'This Month',
    'year': 'This Year',
}

PREVIOUS_PERIOD_GAP = timedelta(milliseconds=1)


class ValidationError(ValueError):
    """报表参数不合法"""


@dataclass(frozen=True)
class PeriodWindow:
    """报表时间窗口 [start, end)"""
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.start > self.end:
            raise ValidationError(
                f"Window start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def days(self) -> int:
        """窗口覆盖的天数（不足一天按一天计）"""
        return max(1, math.ceil(self.duration.total_seconds() / 86400))

    def contains(self, ts: datetime) -> bool:
        return self.start <= ts < self.end

    def previous(self) -> "PeriodWindow":
        """紧邻的上一个等长窗口，用于环比"""
        try:
            previous_end = self.start - PREVIOUS_PERIOD_GAP
            previous_start = previous_end - self.duration
        except OverflowError as e:
            raise ValidationError(
                f"Window starting {self.start.isoformat()} has no previous period to compare with"
            ) from e
        return PeriodWindow(start=previous_start, end=previous_end)

    def to_dict(self) -> Dict[str, str]:
        return {
            'start_date': self.start.isoformat(),
            'end_date': self.end.isoformat()
        }


@dataclass(frozen=True)
class Bucket:
    """趋势图的一个时间桶"""
    label: str
    start: datetime
    end: datetime


def _parse_iso(value: str) -> Optional[datetime]:
    """字符串只接受ISO 8601格式"""
    ts = pd.to_datetime(value.strip(), format='ISO8601', utc=True)
    return None if pd.isna(ts) else ts.to_pydatetime()


def _coerce_bound(value: Any, name: str) -> datetime:
    try:
        parsed = _parse_iso(value) if isinstance(value, str) else to_utc(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise ValidationError(f"Invalid {name}: {value!r}") from e
    if parsed is None:
        raise ValidationError(f"Invalid {name}: {value!r}")
    return parsed


def _utc_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    return _coerce_bound(now, "reference time")


def _start_of_day(ts: datetime) -> datetime:
    return ts.replace(hour=0, minute=0, second=0, microsecond=0)


def _start_of_month(ts: datetime) -> datetime:
    return _start_of_day(ts).replace(day=1)


def _add_month(ts: datetime) -> datetime:
    if ts.month == 12:
        return ts.replace(year=ts.year + 1, month=1)
    return ts.replace(month=ts.month + 1)


def resolve_period(
        period: str = 'month',
        explicit_start: Any = None,
        explicit_end: Any = None,
        now: Optional[datetime] = None
) -> PeriodWindow:
    """把时间范围符号解析为具体窗口"""
    period = (period or 'month').lower()
    if period not in PERIODS:
        raise ValidationError(f"Unknown period '{period}', expected one of {', '.join(PERIODS)}")

    current = _utc_now(now)

    if period == 'custom':
        if explicit_start not in (None, "") and explicit_end not in (None, ""):
            window = PeriodWindow(
                start=_coerce_bound(explicit_start, "start date"),
                end=_coerce_bound(explicit_end, "end date")
            )
            # 环比窗口也必须能表示
            window.previous()
            return window
        logger.warning("Custom period without both bounds, falling back to month")
        period = 'month'

    if period == 'day':
        return PeriodWindow(start=_start_of_day(current), end=current)
    if period == 'week':
        return PeriodWindow(start=current - timedelta(days=7), end=current)
    if period == 'year':
        return PeriodWindow(start=_start_of_month(current).replace(month=1), end=current)
    return PeriodWindow(start=_start_of_month(current), end=current)


def period_label(period: str) -> str:
    return PERIOD_LABELS.get((period or '').lower(), 'This Period')


def granularity_for(window: PeriodWindow) -> str:
    """按窗口长度选择趋势粒度：7天内按天，60天内按周，否则按月"""
    if window.duration <= timedelta(days=7):
        return 'day'
    if window.duration <= timedelta(days=60):
        return 'week'
    return 'month'


def iter_buckets(window: PeriodWindow, granularity: Optional[str] = None) -> List[Bucket]:
    """把窗口切分为按时间顺序排列的时间桶（没有订单的桶也保留）"""
    granularity = granularity or granularity_for(window)
    buckets = []

    if granularity == 'day':
        cursor = _start_of_day(window.start)
        while cursor < window.end:
            following = cursor + timedelta(days=1)
            buckets.append(Bucket(
                label=cursor.strftime('%Y-%m-%d'),
                start=max(cursor, window.start),
                end=min(following, window.end)
            ))
            cursor = following
    elif granularity == 'week':
        cursor = window.start
        while cursor < window.end:
            following = cursor + timedelta(days=7)
            buckets.append(Bucket(
                label=f"Week {len(buckets) + 1}",
                start=cursor,
                end=min(following, window.end)
            ))
            cursor = following
    elif granularity == 'month':
        cursor = _start_of_month(window.start)
        while cursor < window.end:
            following = _add_month(cursor)
            buckets.append(Bucket(
                label=cursor.strftime('%b %Y'),
                start=max(cursor, window.start),
                end=min(following, window.end)
            ))
            cursor = following
    else:
        raise ValidationError(f"Unknown granularity '{granularity}'")

    if not buckets:
        # 零长度窗口仍然输出一个桶
        label = {'day': '%Y-%m-%d', 'month': '%b %Y'}.get(granularity)
        buckets.append(Bucket(
            label=window.start.strftime(label) if label else "Week 1",
            start=window.start,
            end=window.end
        ))

    return buckets
