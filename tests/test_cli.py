"""Tests for the command line interface."""

import json
import sys
from argparse import Namespace
from pathlib import Path
from unittest.mock import patch

import pytest

from jtsvis.__main__ import (
    cmd_config_get,
    cmd_config_validate,
    cmd_poll,
    cmd_target,
    cmd_view,
    create_parser,
    parse_targets,
)
from jtsvis.poller import PollTarget
from jtsvis.record import Record


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch):
    """Run in an empty directory so no stray config is picked up."""
    monkeypatch.chdir(tmp_path)
    return tmp_path


def write_config(workdir: Path, content: str) -> Path:
    config_dir = workdir / ".jtsvis"
    config_dir.mkdir(exist_ok=True)
    config_path = config_dir / "config.toml"
    config_path.write_text(content)
    return config_path


def poll_args(targets, **kwargs) -> Namespace:
    defaults = {"interval": None, "duration": None, "probe_timeout": None}
    defaults.update(kwargs)
    return Namespace(targets=targets, **defaults)


def view_args(record_file, **kwargs) -> Namespace:
    defaults = {"segment_duration": None, "realtime": False, "last": 0}
    defaults.update(kwargs)
    return Namespace(record_file=str(record_file), **defaults)


class TestParser:
    """Tests for argument parsing."""

    def test_poll_arguments(self):
        parser = create_parser()
        args = parser.parse_args(["poll", '{"name":"a","probe_path":"/x"}', "-i", "0.5", "-d", "10"])

        assert args.command == "poll"
        assert args.targets == ['{"name":"a","probe_path":"/x"}']
        assert args.interval == 0.5
        assert args.duration == 10.0

    def test_target_passes_probe_args_through(self):
        """Test probe arguments that look like options reach the probe."""
        parser = create_parser()
        args = parser.parse_args(["target", "-t", "load", "/bin/cat", "-n", "/proc/loadavg"])

        assert args.target == "load"
        assert args.probe_path == "/bin/cat"
        assert args.probe_args == ["-n", "/proc/loadavg"]

    def test_view_arguments(self):
        parser = create_parser()
        args = parser.parse_args(["view", "log.jsonl", "-s", "5", "-r", "-n", "3"])

        assert args.record_file == "log.jsonl"
        assert args.segment_duration == 5
        assert args.realtime is True
        assert args.last == 3


class TestParseTargets:
    """Tests for parse_targets."""

    def test_inline_json(self):
        targets = parse_targets(['{"name":"a","probe_path":"/bin/a","probe_args":["x"]}'])
        assert targets == [PollTarget("a", Path("/bin/a"), ("x",))]

    def test_target_file(self, tmp_path: Path):
        """Test @FILE reads one target per non-blank line."""
        target_file = tmp_path / "targets.jsonl"
        target_file.write_text(
            '{"name":"a","probe_path":"/bin/a"}\n\n{"name":"b","probe_path":"/bin/b"}\n'
        )

        targets = parse_targets([f"@{target_file}"])

        assert [t.name for t in targets] == ["a", "b"]

    def test_invalid_definition(self):
        with pytest.raises(ValueError):
            parse_targets(['{"name":"a"}'])


class TestCmdTarget:
    """Tests for the target command."""

    def test_prints_definition(self, capsys):
        args = Namespace(probe_path="/bin/cat", probe_args=["/proc/loadavg"], target="load")

        assert cmd_target(args) == 0

        output = capsys.readouterr().out.strip()
        assert json.loads(output) == {
            "name": "load",
            "probe_path": "/bin/cat",
            "probe_args": ["/proc/loadavg"],
        }
        assert PollTarget.from_json(output).name == "load"

    def test_default_name(self, capsys):
        args = Namespace(probe_path="/bin/true", probe_args=[], target=None)

        with patch("jtsvis.__main__.os.getpid", return_value=4242):
            cmd_target(args)

        output = json.loads(capsys.readouterr().out)
        assert output == {"name": "target.4242", "probe_path": "/bin/true"}


class TestCmdPoll:
    """Tests for the poll command."""

    def test_streams_records(self, workdir, capsys):
        target = PollTarget("py", Path(sys.executable), ("-c", "print('{\"n\": 1}')"))

        result = cmd_poll(poll_args([target.to_json()], interval=0.1, duration=0.25))

        assert result == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines
        records = [Record.from_dict(json.loads(line)) for line in lines]
        assert all(r.target == "py" and r.value == {"n": 1} for r in records)

    def test_no_targets(self, workdir, capsys):
        assert cmd_poll(poll_args([])) == 1
        assert "No targets" in capsys.readouterr().err

    def test_invalid_target(self, workdir, capsys):
        assert cmd_poll(poll_args(["not json"])) == 1
        assert "Error" in capsys.readouterr().err

    def test_uses_configured_targets(self, workdir):
        """Test enabled config targets and settings are used."""
        write_config(
            workdir,
            """
[poll]
interval = 2
duration = 7

[targets.a]
probe_path = "/bin/a"

[targets.b]
probe_path = "/bin/b"
enabled = false
""",
        )

        with patch("jtsvis.poller.poll_targets") as mock_poll:
            assert cmd_poll(poll_args([])) == 0

        targets, interval, duration = mock_poll.call_args.args
        assert [t.name for t in targets] == ["a"]
        assert interval == 2.0
        assert duration == 7.0

    def test_invalid_config(self, workdir, capsys):
        write_config(workdir, "[poll]\ninterval = -1\n")

        assert cmd_poll(poll_args(['{"name":"a","probe_path":"/x"}'])) == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_non_numeric_config_value(self, workdir, capsys):
        write_config(workdir, "[poll]\ninterval = [1, 2]\n")

        assert cmd_poll(poll_args(['{"name":"a","probe_path":"/x"}'])) == 1
        assert "[poll] interval must be a number" in capsys.readouterr().err


class TestCmdView:
    """Tests for the view command."""

    def test_prints_segments(self, workdir, capsys):
        path = workdir / "records.jsonl"
        path.write_text(
            "".join(
                Record(t, 10.0 + i, {"n": i}).to_json() + "\n"
                for i, t in enumerate(["a", "b", "a"])
            )
        )

        assert cmd_view(view_args(path, segment_duration=2)) == 0

        out = capsys.readouterr().out
        assert "(+2s) targets=2 samples=2" in out
        assert "(+2s) targets=1 samples=1" in out

    def test_missing_file(self, workdir, capsys):
        assert cmd_view(view_args(workdir / "missing.jsonl")) == 1
        assert "not found" in capsys.readouterr().err

    def test_malformed_file(self, workdir, capsys):
        path = workdir / "records.jsonl"
        path.write_text("{oops\n")

        assert cmd_view(view_args(path)) == 1
        assert "Malformed" in capsys.readouterr().err

    def test_oversized_timestamp_is_malformed(self, workdir, capsys):
        path = workdir / "records.jsonl"
        path.write_text('{"target":"t","timestamp":' + "9" * 400 + ',"value":1}\n')

        assert cmd_view(view_args(path)) == 1
        assert "Malformed" in capsys.readouterr().err

    def test_far_future_timestamp(self, workdir, capsys):
        """Test a timestamp beyond the calendar still renders."""
        path = workdir / "records.jsonl"
        path.write_text(Record("t", 1e20, 1).to_json() + "\n")

        assert cmd_view(view_args(path)) == 0
        assert "100000000000000000000s" in capsys.readouterr().out

    def test_invalid_segment_duration(self, workdir, capsys):
        path = workdir / "records.jsonl"
        path.write_text("")

        assert cmd_view(view_args(path, segment_duration=0)) == 1
        assert "must be positive" in capsys.readouterr().err


class TestCmdConfig:
    """Tests for the config subcommands."""

    def test_get_default_value(self, workdir, capsys):
        assert cmd_config_get(Namespace(key="poll.interval")) == 0
        assert capsys.readouterr().out.strip() == "1.0"

    def test_get_unknown_key(self, workdir, capsys):
        assert cmd_config_get(Namespace(key="poll.nope")) == 1
        assert "not found" in capsys.readouterr().err

    def test_validate(self, workdir, capsys):
        write_config(workdir, '[targets.load]\nprobe_path = "/bin/cat"\n')

        assert cmd_config_validate(Namespace()) == 0

        out = capsys.readouterr().out
        assert "Configuration valid" in out
        assert "load: /bin/cat, enabled" in out

    def test_validate_missing_config(self, workdir, capsys):
        assert cmd_config_validate(Namespace()) == 0
        assert "No configuration found" in capsys.readouterr().err

    def test_validate_invalid_config(self, workdir, capsys):
        write_config(workdir, '[logging]\nlevel = "chatty"\n')

        assert cmd_config_validate(Namespace()) == 1
        assert "Configuration error" in capsys.readouterr().err
