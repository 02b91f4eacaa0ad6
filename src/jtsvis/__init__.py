"""jtsvis - JSON time series collection and inspection.

jtsvis polls probe commands that print JSON, streams the timestamped samples
to a JSONL log, and aggregates that log into fixed-width time segments.
"""

__version__ = "0.1.0"

from jtsvis.jsonl import DecodeError, JsonlReader, JsonlWriter
from jtsvis.poller import PollTarget, Poller, RecordChannel, poll_targets
from jtsvis.record import MetricValue, Record, flatten
from jtsvis.timeseries import TimeSeries

__all__ = [
    "DecodeError",
    "JsonlReader",
    "JsonlWriter",
    "MetricValue",
    "PollTarget",
    "Poller",
    "Record",
    "RecordChannel",
    "TimeSeries",
    "flatten",
    "poll_targets",
]
