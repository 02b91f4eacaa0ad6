"""Plain-text viewer for jtsvis line logs.

Loads a JSONL record log into a TimeSeries and prints one block per segment
with the cross-target sum and per-second delta of every metric key. In
realtime mode the log is tailed and segments are re-printed as they change.
"""

from __future__ import annotations

import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import IO

from jtsvis.jsonl import JsonlReader
from jtsvis.timeseries import Avg, Number, RepresentativeValue, TimeSeries, TimeSeriesSegment

logger = logging.getLogger("jtsvis.viewer")


def format_number(n: Number) -> str:
    """Format a number with thousands separators."""
    if isinstance(n, int):
        return f"{n:,}"
    return f"{n:,.3f}"


def format_delta(delta: Number | None) -> str:
    if delta is None:
        return ""
    sign = "+" if delta >= 0 else ""
    return f"{sign}{format_number(delta)}/s"


def format_value(value: RepresentativeValue | None) -> str:
    if value is None:
        return "-"
    if isinstance(value, Avg):
        return format_number(value.value)
    return "{" + ", ".join(v.to_json() for v in value.sorted()) + "}"


def format_time(seconds: int) -> str:
    """Format epoch seconds as UTC, or as raw seconds if not representable."""
    try:
        moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, ValueError, OSError):
        return f"{seconds}s"
    return moment.strftime("%Y-%m-%d %H:%M:%S")


def render_segment(segment: TimeSeriesSegment) -> str:
    """Render one synced segment as a text block."""
    targets = len(segment.target_segment_values)
    lines = [
        f"=== {format_time(segment.start_time)} (+{segment.segment_duration}s) "
        f"targets={targets} samples={segment.sample_count()} ==="
    ]

    if segment.aggregated_values:
        width = max(len(key) for key in segment.aggregated_values)
        for key, aggregated in segment.aggregated_values.items():
            name = (key or "(value)").ljust(width)
            value = format_value(aggregated.sum)
            delta = format_delta(aggregated.delta)
            lines.append(f"  {name}  {value}  {delta}".rstrip())

    return "\n".join(lines)


def render(series: TimeSeries, starts: list[int] | None = None) -> str:
    """Render the given segments (all of them by default)."""
    if starts is None:
        starts = list(series.segments)
    return "\n\n".join(render_segment(series.segments[s]) for s in starts)


class Viewer:
    """Reads a record log and prints its segments."""

    def __init__(
        self,
        path: Path,
        segment_duration: int = 1,
        realtime: bool = False,
        tail_interval: float = 0.5,
        last: int = 0,
        out: IO[str] | None = None,
    ):
        """Initialize the viewer.

        Args:
            path: Path to the JSONL record log.
            segment_duration: Segment width in seconds.
            realtime: Keep tailing the log for new records.
            tail_interval: Seconds to wait when no new line is available.
            last: Only print the newest N segments initially (0 for all).
            out: Output stream. Defaults to stdout.
        """
        self.path = path
        self.series = TimeSeries(segment_duration)
        self.realtime = realtime
        self.tail_interval = tail_interval
        self.last = last
        self.out = out or sys.stdout
        self._file: IO[bytes] | None = None
        self._reader: JsonlReader | None = None

    def open(self) -> None:
        self._file = open(self.path, "rb")
        self._reader = JsonlReader(self._file)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
        self._file = None
        self._reader = None

    def poll_updates(self) -> list[int]:
        """Read every complete record now available and sync the series.

        Returns:
            Start times of the segments whose values changed.

        Raises:
            DecodeError: If the log contains a malformed line.
        """
        if self._reader is None:
            self.open()
        count = self.series.load(self._reader)
        if count:
            logger.debug(f"Read {count} records from {self.path}")
        return self.series.sync_state()

    def run(self) -> int:
        """Print the log, then tail it if realtime mode is enabled.

        Returns:
            Exit code (0 for success).
        """
        try:
            changed = self.poll_updates()
            if self.last > 0:
                changed = changed[-self.last :]
            self._print(changed)

            while self.realtime:
                time.sleep(self.tail_interval)
                changed = self.poll_updates()
                self._print(changed)
        except KeyboardInterrupt:
            pass
        finally:
            self.close()
        return 0

    def _print(self, starts: list[int]) -> None:
        if not starts:
            return
        print(render(self.series, starts), file=self.out)
        print(file=self.out)
        self.out.flush()
