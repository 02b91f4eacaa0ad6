"""Probe polling for jtsvis.

Each PollTarget is polled by its own Poller thread. A probe is an external
command that prints one JSON value; every successful run becomes a Record
sent on a shared RecordChannel. Probe failures are logged and skipped so one
misbehaving target never stops the others.

Usage:
    targets = [PollTarget("load", Path("/usr/bin/cat"), ("/proc/loadavg",))]
    for record in poll_targets(targets, poll_interval=1.0, poll_duration=60.0):
        print(record.to_json())
"""

from __future__ import annotations

import json
import logging
import queue
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Iterator

from jtsvis.record import Record

logger = logging.getLogger("jtsvis.poller")


@dataclass(frozen=True)
class PollTarget:
    """A named probe command to poll.

    Attributes:
        name: Target name recorded in every Record.
        probe_path: Path to the probe executable.
        probe_args: Arguments passed to the probe.
    """

    name: str
    probe_path: Path
    probe_args: tuple[str, ...] = ()

    def command(self) -> list[str]:
        return [str(self.probe_path), *self.probe_args]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "probe_path": str(self.probe_path)}
        if self.probe_args:
            data["probe_args"] = list(self.probe_args)
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Any) -> PollTarget:
        """Create a PollTarget from a target definition object.

        Raises:
            ValueError: If required fields are missing or have the wrong type.
        """
        if not isinstance(data, dict):
            raise ValueError("Target definition must be a JSON object")
        if "name" not in data:
            raise ValueError("Target missing required field 'name'")
        if "probe_path" not in data:
            raise ValueError(f"Target '{data['name']}' missing required field 'probe_path'")

        name = data["name"]
        if not isinstance(name, str) or not name:
            raise ValueError("Target field 'name' must be a non-empty string")
        if not isinstance(data["probe_path"], str):
            raise ValueError(f"Target '{name}' field 'probe_path' must be a string")

        args = data.get("probe_args", [])
        if not isinstance(args, list) or not all(isinstance(a, str) for a in args):
            raise ValueError(f"Target '{name}' field 'probe_args' must be a list of strings")

        return cls(name=name, probe_path=Path(data["probe_path"]), probe_args=tuple(args))

    @classmethod
    def from_json(cls, text: str) -> PollTarget:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid target JSON: {e}") from e
        return cls.from_dict(data)


class ChannelClosed(RuntimeError):
    """Raised when sending on a channel whose receiver has gone away."""


_SENDER_DONE = object()


class RecordChannel:
    """Multi-producer, single-consumer hand-off of records.

    Every producer calls ``open_sender`` before starting and ``close_sender``
    when it stops. Iterating the channel yields records until all senders
    have closed. The receiver calls ``close`` to make further sends fail.
    """

    def __init__(self):
        self._queue: queue.Queue[Any] = queue.Queue()
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._senders = 0

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def open_sender(self) -> None:
        with self._lock:
            self._senders += 1

    def close_sender(self) -> None:
        self._queue.put(_SENDER_DONE)

    def send(self, record: Record) -> None:
        if self._closed.is_set():
            raise ChannelClosed("Receiver has closed the channel")
        self._queue.put(record)

    def receive(self) -> Record | None:
        """Block until a record arrives, or return None once all senders are done."""
        while True:
            with self._lock:
                if self._senders == 0:
                    return None
            item = self._queue.get()
            if item is _SENDER_DONE:
                with self._lock:
                    self._senders -= 1
                continue
            return item

    def close(self) -> None:
        self._closed.set()

    def __iter__(self) -> Iterator[Record]:
        while True:
            record = self.receive()
            if record is None:
                return
            yield record


class PollerState(Enum):
    SCHEDULED = "scheduled"
    EXECUTING = "executing"
    STOPPED = "stopped"


class Poller:
    """Polls one target on a fixed cadence for a bounded duration."""

    def __init__(
        self,
        target: PollTarget,
        poll_interval: float,
        poll_duration: float,
        probe_timeout: float | None = None,
    ):
        """Initialize the poller.

        Args:
            target: The target to poll.
            poll_interval: Seconds between polls.
            poll_duration: Total seconds to keep polling, from now.
            probe_timeout: Seconds before a probe run is abandoned (None = wait).
        """
        if poll_interval <= 0:
            raise ValueError(f"poll_interval must be positive, got {poll_interval}")
        if poll_duration < 0:
            raise ValueError(f"poll_duration must not be negative, got {poll_duration}")

        self.target = target
        self.poll_interval = poll_interval
        self.probe_timeout = probe_timeout or None
        now = time.monotonic()
        self.next_poll_time = now
        self.end_time = now + poll_duration
        self.state = PollerState.SCHEDULED

    def start(self, channel: RecordChannel) -> threading.Thread:
        """Run the poller in a background thread sending to channel."""
        channel.open_sender()
        thread = threading.Thread(
            target=self._run_and_close,
            args=(channel,),
            name=f"poller-{self.target.name}",
            daemon=True,
        )
        thread.start()
        return thread

    def _run_and_close(self, channel: RecordChannel) -> None:
        try:
            self.run(channel)
        finally:
            self.state = PollerState.STOPPED
            channel.close_sender()

    def run(self, channel: RecordChannel) -> None:
        """Poll until the duration is exhausted or the channel is closed."""
        logger.debug(f"Polling target '{self.target.name}' every {self.poll_interval}s")
        while self.tick(channel):
            delay = self.next_poll_time - time.monotonic()
            if delay > 0:
                time.sleep(delay)
        logger.debug(f"Stopped polling target '{self.target.name}'")

    def tick(self, channel: RecordChannel) -> bool:
        """Run one scheduling step.

        Returns:
            True if the poller is still scheduled, False once stopped.
        """
        if self.end_time <= self.next_poll_time:
            self.state = PollerState.STOPPED
            return False

        self.state = PollerState.EXECUTING
        record = self.poll_once()
        if record is not None:
            try:
                channel.send(record)
            except ChannelClosed:
                logger.debug(f"Channel closed, stopping target '{self.target.name}'")
                self.state = PollerState.STOPPED
                return False

        # Skip missed ticks rather than bursting to catch up
        now = time.monotonic()
        while self.next_poll_time <= now:
            self.next_poll_time += self.poll_interval

        self.state = PollerState.SCHEDULED
        return True

    def poll_once(self) -> Record | None:
        """Run the probe once.

        Returns:
            A Record on success, None if the probe failed (the failure is logged).
        """
        name = self.target.name
        path = self.target.probe_path

        try:
            result = subprocess.run(
                self.target.command(),
                capture_output=True,
                timeout=self.probe_timeout,
            )
        except subprocess.TimeoutExpired:
            logger.warning(
                f"Probe for target '{name}' timed out after {self.probe_timeout}s: {path}"
            )
            return None
        except OSError as e:
            logger.warning(f"Failed to execute probe for target '{name}': {path}: {e}")
            return None

        stdout = result.stdout.decode("utf-8", errors="replace")
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace")
            logger.warning(
                f"Probe for target '{name}' exited with code {result.returncode}: {path}\n"
                f"  stdout: {stdout.strip()}\n"
                f"  stderr: {stderr.strip()}"
            )
            return None

        try:
            value = json.loads(result.stdout)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(
                f"Probe for target '{name}' printed invalid JSON: {path}: {e}\n"
                f"  stdout: {stdout.strip()}"
            )
            return None

        return Record(target=name, timestamp=time.time(), value=value)


def poll_targets(
    targets: Iterable[PollTarget],
    poll_interval: float,
    poll_duration: float,
    probe_timeout: float | None = None,
) -> Iterator[Record]:
    """Poll every target concurrently and yield records as they arrive.

    The generator ends once every poller has stopped. Closing it early
    (e.g. the consumer breaks out of its loop) closes the channel so the
    pollers stop at their next send.
    """
    channel = RecordChannel()
    for target in targets:
        Poller(target, poll_interval, poll_duration, probe_timeout).start(channel)

    try:
        yield from channel
    finally:
        channel.close()
