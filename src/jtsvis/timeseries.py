"""Time series aggregation engine for jtsvis.

Records are bucketed into fixed-width segments keyed by their start time (in
whole seconds). Inserting only appends raw samples and marks the segment
dirty; representative values and deltas are recomputed lazily by
``sync_state`` for the segments touched since the previous sync.

Usage:
    series = TimeSeries(segment_duration=10)
    for record in records:
        series.insert(record)
    series.sync_state()

    for start, segment in series.segments.items():
        for key, agg in segment.aggregated_values.items():
            print(start, key, agg.sum, agg.delta)
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Union

from jtsvis.jsonl import JsonlReader
from jtsvis.record import I64_MAX, I64_MIN, MetricValue, Record

Number = Union[int, float]


@dataclass(frozen=True)
class Avg:
    """Numeric mean of a segment's samples (int when all samples were ints)."""

    value: Number


@dataclass(frozen=True)
class ValueSet:
    """Distinct samples of a segment, used when averaging is not meaningful."""

    values: frozenset[MetricValue] = frozenset()

    def sorted(self) -> list[MetricValue]:
        return sorted(self.values)


RepresentativeValue = Union[Avg, ValueSet]


def _fits_i64(value: int) -> bool:
    return I64_MIN <= value <= I64_MAX


def _trunc_div(a: int, b: int) -> int:
    """Integer division rounding toward zero."""
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def number_add(a: Number, b: Number) -> Number | None:
    """Add two numbers, or return None if the result is not representable."""
    if isinstance(a, int) and isinstance(b, int):
        result = a + b
        return result if _fits_i64(result) else None
    result = float(a) + float(b)
    return result if math.isfinite(result) else None


def rate_of_change(current: Number, previous: Number, seconds: int) -> Number | None:
    """Per-second change between two consecutive segment values.

    Integer operands use truncating integer arithmetic; anything else is
    computed in floating point.
    """
    if isinstance(current, int) and isinstance(previous, int):
        diff = current - previous
        if not _fits_i64(diff):
            return None
        return _trunc_div(diff, seconds)
    result = (float(current) - float(previous)) / seconds
    return result if math.isfinite(result) else None


def representative_value(raw_values: list[MetricValue]) -> RepresentativeValue:
    """Summarize a segment's raw samples.

    All integers give an integer mean (truncated), all numbers give a float
    mean when finite, anything else gives the set of distinct values.
    """
    if raw_values and all(v.is_integer for v in raw_values):
        total = sum(v.value for v in raw_values)
        return Avg(_trunc_div(total, len(raw_values)))

    if raw_values and all(v.is_number for v in raw_values):
        avg = sum(v.as_float() for v in raw_values) / len(raw_values)
        if math.isfinite(avg):
            return Avg(avg)

    return ValueSet(frozenset(raw_values))


def sum_values(values: Iterable[RepresentativeValue]) -> RepresentativeValue | None:
    """Combine representative values across targets.

    Averages are added, sets are unioned. Mixing the two, or a numeric sum
    that cannot be represented, yields None.
    """
    it = iter(values)
    total = next(it, None)
    for value in it:
        if isinstance(total, Avg) and isinstance(value, Avg):
            result = number_add(total.value, value.value)
            if result is None:
                return None
            total = Avg(result)
        elif isinstance(total, ValueSet) and isinstance(value, ValueSet):
            total = ValueSet(total.values | value.values)
        else:
            return None
    return total


def _delta(
    current: RepresentativeValue | None,
    previous: RepresentativeValue | None,
    seconds: int,
) -> Number | None:
    if isinstance(current, Avg) and isinstance(previous, Avg):
        return rate_of_change(current.value, previous.value, seconds)
    return None


@dataclass
class SegmentValue:
    """Samples of one metric key from one target within a segment.

    ``value`` and ``delta`` are only meaningful once the owning segment has
    been synced; ``value`` is None before the first sync.
    """

    raw_values: list[MetricValue] = field(default_factory=list)
    value: RepresentativeValue | None = None
    delta: Number | None = None


@dataclass
class AggregatedValue:
    """Cross-target combination of one metric key within a segment."""

    sum: RepresentativeValue | None = None
    delta: Number | None = None


@dataclass
class TimeSeriesSegment:
    """All samples whose timestamp falls in ``[start_time, end_time)``."""

    start_time: int
    segment_duration: int
    aggregated_values: dict[str, AggregatedValue] = field(default_factory=dict)
    target_segment_values: dict[str, dict[str, SegmentValue]] = field(
        default_factory=dict
    )

    @property
    def end_time(self) -> int:
        return self.start_time + self.segment_duration

    @classmethod
    def empty(cls, segment_duration: int) -> TimeSeriesSegment:
        """Placeholder predecessor for segments with no neighbour."""
        return cls(start_time=0, segment_duration=segment_duration)

    def sample_count(self) -> int:
        """Number of samples received, counted as the longest raw series per target."""
        return sum(
            max((len(v.raw_values) for v in values.values()), default=0)
            for values in self.target_segment_values.values()
        )

    def append(self, target: str, metrics: dict[str, MetricValue]) -> None:
        target_values = self.target_segment_values.setdefault(target, {})
        for key, value in metrics.items():
            target_values.setdefault(key, SegmentValue()).raw_values.append(value)

    def sync_state(self, prev_segment: TimeSeriesSegment) -> None:
        self._sync_target_segment_values(prev_segment)
        self._sync_aggregated_values(prev_segment)

    def _sync_target_segment_values(self, prev_segment: TimeSeriesSegment) -> None:
        for target, segment_values in self.target_segment_values.items():
            prev_values = prev_segment.target_segment_values.get(target, {})
            for key, segment_value in segment_values.items():
                segment_value.value = representative_value(segment_value.raw_values)
                prev_value = prev_values.get(key)
                segment_value.delta = _delta(
                    segment_value.value,
                    prev_value.value if prev_value else None,
                    self.segment_duration,
                )

    def _sync_aggregated_values(self, prev_segment: TimeSeriesSegment) -> None:
        keys: set[str] = set()
        for segment_values in self.target_segment_values.values():
            keys.update(segment_values)

        aggregated: dict[str, AggregatedValue] = {}
        for key in sorted(keys):
            total = sum_values(
                self.target_segment_values[target][key].value
                for target in sorted(self.target_segment_values)
                if key in self.target_segment_values[target]
            )
            prev = prev_segment.aggregated_values.get(key)
            aggregated[key] = AggregatedValue(
                sum=total,
                delta=_delta(total, prev.sum if prev else None, self.segment_duration),
            )
        self.aggregated_values = aggregated


class TimeSeries:
    """Segmented, incrementally aggregated view over a stream of records.

    Not thread-safe: a single consumer owns and mutates the series.

    Attributes:
        segment_duration: Width of each segment in whole seconds.
        start_time: Start of the earliest segment (0 while empty).
        end_time: One second past the latest observed timestamp (0 while empty).
        segments: Segments keyed by start time, in ascending order.
        dirty_segments: Start times of segments changed since the last sync.
    """

    def __init__(self, segment_duration: int = 1):
        if isinstance(segment_duration, bool) or not isinstance(segment_duration, int):
            raise TypeError("segment_duration must be an integer number of seconds")
        if segment_duration <= 0:
            raise ValueError(f"segment_duration must be positive, got {segment_duration}")

        self.segment_duration = segment_duration
        self.start_time = 0
        self.end_time = 0
        self.segments: dict[int, TimeSeriesSegment] = {}
        self.dirty_segments: set[int] = set()

    @classmethod
    def from_file(cls, path: Path, segment_duration: int = 1) -> TimeSeries:
        """Load and sync every record of a JSONL line log.

        Raises:
            DecodeError: If any line of the log is malformed.
        """
        series = cls(segment_duration)
        with open(path, "rb") as f:
            series.load(JsonlReader(f))
        series.sync_state()
        return series

    def is_empty(self) -> bool:
        return not self.segments

    def last_time(self) -> int:
        """Start time of the newest segment (0 while empty)."""
        return next(reversed(self.segments), 0)

    def get_segment(self, start_time: int) -> TimeSeriesSegment | None:
        return self.segments.get(start_time)

    def targets(self) -> list[str]:
        names: set[str] = set()
        for segment in self.segments.values():
            names.update(segment.target_segment_values)
        return sorted(names)

    def metric_keys(self) -> list[str]:
        keys: set[str] = set()
        for segment in self.segments.values():
            for values in segment.target_segment_values.values():
                keys.update(values)
        return sorted(keys)

    def segment_start(self, timestamp: float) -> int:
        """Start time of the segment a timestamp belongs to."""
        seconds = math.floor(timestamp)
        return seconds - seconds % self.segment_duration

    def insert(self, record: Record) -> None:
        """Append a record's samples to its segment and mark it dirty."""
        flattened = record.flatten()
        seconds = math.floor(flattened.timestamp)
        start_time = self.segment_start(seconds)

        if self.is_empty():
            self.start_time = start_time
            self.end_time = seconds + 1
        else:
            self.start_time = min(self.start_time, start_time)
            self.end_time = max(self.end_time, seconds + 1)

        segment = self.segments.get(start_time)
        if segment is None:
            segment = TimeSeriesSegment(start_time, self.segment_duration)
            out_of_order = bool(self.segments) and start_time < self.last_time()
            self.segments[start_time] = segment
            if out_of_order:
                self.segments = dict(sorted(self.segments.items()))

        segment.append(flattened.target, flattened.metrics)
        self.dirty_segments.add(start_time)

    def load(self, reader: JsonlReader) -> int:
        """Insert every record available from a reader.

        Returns:
            Number of records inserted.

        Raises:
            DecodeError: If a line is malformed.
        """
        count = 0
        for record in reader.iter_items(Record.from_dict):
            self.insert(record)
            count += 1
        return count

    def sync_state(self) -> list[int]:
        """Recompute representative values and deltas of dirty segments.

        The successor of a dirty segment is recomputed as well, since its
        deltas depend on the values being replaced. Segments are processed
        oldest first, each at most once.

        Returns:
            Start times of the segments that were recomputed.
        """
        pending = set(self.dirty_segments)
        for start_time in self.dirty_segments:
            successor = start_time + self.segment_duration
            if successor in self.segments:
                pending.add(successor)
        self.dirty_segments.clear()

        empty = TimeSeriesSegment.empty(self.segment_duration)
        synced = sorted(pending)
        for start_time in synced:
            prev = self.segments.get(start_time - self.segment_duration, empty)
            self.segments[start_time].sync_state(prev)
        return synced

    def __iter__(self) -> Iterator[TimeSeriesSegment]:
        return iter(self.segments.values())

    def __len__(self) -> int:
        return len(self.segments)
