"""
Chart Normalizer

Turns a requested chart window into explicit UTC bounds, picks the sampling
granularity, and cleans provider history into a uniform series.

Window resolution:
    - ``end`` defaults to now. A date means 23:59:59 UTC of that day (capped
      at now for today); a date after today is rejected.
    - ``start`` given as a date means 00:00:00 UTC of that day. Without an
      explicit start, the preset lookback is applied from ``end``:

        1D  1 day        1Y   1 year
        5D  5 days       5Y   5 years
        1M  1 month      YTD  Jan 1 of end's year
        6M  6 months     ALL  36 500 days

    - ``start`` after ``end`` is rejected.

Sampling:
    ``auto`` prefers hourly for windows of at most 5 days, daily otherwise.
    The window keeps the requested sampling; each provider turns ``auto``
    into what it can serve (``ProviderInterface.history_sampling``), so a
    daily-only provider answers short windows with daily points. Only an
    explicit ``hourly`` the provider cannot serve is an error.

Normalization:
    Points are clipped to ``[start, end]``, de-duplicated by timestamp
    (first occurrence wins) and sorted ascending. Gaps are left as they are.
"""

import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, List, Optional, Union

from dateutil.relativedelta import relativedelta

from core.errors import InvalidChartWindowError
from core.schemas import ChartPoint, ChartWindowRequest, PriceHistory, Sampling
from core.utils.time import current_utc_datetime, end_of_day, ensure_utc, start_of_day

PRESET_LOOKBACKS = {
    "1D": relativedelta(days=1),
    "5D": relativedelta(days=5),
    "1M": relativedelta(months=1),
    "6M": relativedelta(months=6),
    "1Y": relativedelta(years=1),
    "5Y": relativedelta(years=5),
    "ALL": relativedelta(days=36500),
}
YTD_PRESET = "YTD"
HOURLY_THRESHOLD = timedelta(days=5)


def auto_sampling(start: datetime, end: datetime) -> Sampling:
    """Preferred concrete sampling for an ``auto`` request over ``[start, end]``."""
    return Sampling.HOURLY if end - start <= HOURLY_THRESHOLD else Sampling.DAILY


@dataclass(frozen=True)
class ChartWindow:
    start: datetime
    end: datetime
    sampling: Sampling


class ChartNormalizer:
    """
    Attributes:
        clock: Returns the current UTC time (injectable for tests)
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or current_utc_datetime

    # ============================================
    # Window Resolution
    # ============================================

    def resolve(self, request: ChartWindowRequest) -> ChartWindow:
        """
        Resolve the bounds of a window request. The requested sampling is
        carried through unchanged (``auto`` included).

        Raises:
            InvalidChartWindowError: Unknown preset, end in the future, or start after end

        Example:
            >>> normalizer.resolve(ChartWindowRequest(preset="5D"))
            ChartWindow(start=..., end=..., sampling=<Sampling.AUTO: 'auto'>)
        """
        start, end = self.resolve_bounds(request.preset, request.start, request.end)
        return ChartWindow(start=start, end=end, sampling=request.sampling)

    def resolve_bounds(
        self,
        preset: str = "1M",
        start: Optional[Union[datetime, date]] = None,
        end: Optional[Union[datetime, date]] = None,
    ):
        now = self.clock()
        end_dt = self._resolve_end(end, now)

        if start is not None:
            start_dt = ensure_utc(start) if isinstance(start, datetime) else start_of_day(start)
        else:
            start_dt = self._preset_start(preset, end_dt)

        if start_dt > end_dt:
            raise InvalidChartWindowError(
                f"Chart start {start_dt.isoformat()} is after end {end_dt.isoformat()}"
            )
        return start_dt, end_dt

    @staticmethod
    def _resolve_end(end: Optional[Union[datetime, date]], now: datetime) -> datetime:
        if end is None:
            return now
        if isinstance(end, datetime):
            end_dt = ensure_utc(end)
            if end_dt > now:
                raise InvalidChartWindowError("Chart end cannot be in the future")
            return end_dt
        if end > now.date():
            raise InvalidChartWindowError("Chart end date cannot be in the future")
        return min(end_of_day(end), now)

    @staticmethod
    def _preset_start(preset: str, end: datetime) -> datetime:
        key = (preset or "1M").strip().upper()
        if key == YTD_PRESET:
            return start_of_day(date(end.year, 1, 1))
        if key not in PRESET_LOOKBACKS:
            valid = ", ".join([*PRESET_LOOKBACKS, YTD_PRESET])
            raise InvalidChartWindowError(f"Unknown chart range '{preset}'. Must be one of: {valid}")
        return end - PRESET_LOOKBACKS[key]

    # ============================================
    # Normalization
    # ============================================

    @staticmethod
    def normalize(points: Iterable[ChartPoint], start: datetime, end: datetime) -> List[ChartPoint]:
        """
        Clip to ``[start, end]``, drop duplicate timestamps (keep first) and
        non-finite prices, then sort ascending.
        """
        seen = set()
        kept: List[ChartPoint] = []
        for point in points:
            ts = ensure_utc(point.timestamp)
            if ts < start or ts > end or ts in seen:
                continue
            if not math.isfinite(point.price):
                continue
            seen.add(ts)
            kept.append(point if ts == point.timestamp else point.model_copy(update={"timestamp": ts}))

        kept.sort(key=lambda p: p.timestamp)
        return kept

    def normalize_history(self, history: PriceHistory, window: ChartWindow) -> PriceHistory:
        """
        Return ``history`` with its points normalized to ``window``. The
        sampling stays the one the provider actually served.
        """
        return history.model_copy(
            update={
                "points": self.normalize(history.points, window.start, window.end),
                "start": window.start,
                "end": window.end,
            }
        )
