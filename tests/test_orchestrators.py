"""Tests for speed, ping, traceroute and full test sequencing (with a scripted runner)."""
import pytest

from netdash.core.emitter import TEST_COMPLETE, TEST_PROGRESS, ProgressEmitter
from netdash.core.errors import (
    InvalidTargetError,
    ParseError,
    ProcessExitError,
    ProcessSpawnError,
    ProcessTimeoutError,
)
from netdash.engine import TestEngine, TestRecord
from netdash.modules.bandwidth import SpeedTest, SpeedTestState
from netdash.modules.base import Phase, TestTarget
from netdash.modules.connectivity import PingTest, TracerouteTest
from netdash.modules.full import FullTest

from conftest import PING_OUTPUT, TRACEROUTE_OUTPUT, FakeRunner, ScriptedProcess, iperf_output

TARGET = TestTarget(address="10.0.0.1", port=5201, name="lab-server")


def progress_events(messages):
    return [m.data for m in messages if m.type == TEST_PROGRESS]


class TestSpeedTest:
    """Test the two-phase speed test."""

    async def test_forward_run(self, emitter, messages, settings):
        runner = FakeRunner(
            ScriptedProcess(output=iperf_output(duration=5)),
            ScriptedProcess(output=iperf_output(duration=5)),
        )
        test = SpeedTest(runner, emitter, settings)
        result = await test.run(TARGET, duration=5)

        assert runner.commands == ["iperf3", "iperf3"]
        download_args, upload_args = runner.calls[0][1], runner.calls[1][1]
        assert "-R" not in download_args
        assert "-R" in upload_args
        assert download_args[:8] == ["-c", "10.0.0.1", "-p", "5201", "-t", "5", "-i", "1"]
        assert runner.calls[0][2] == 5 + settings.grace_period

        assert result.download.bandwidth_bps == 9_410_000_000
        assert result.upload.bandwidth_bps == 9_420_000_000
        assert result.jitter_ms is None
        assert test.state is SpeedTestState.COMPLETE

    async def test_reverse_runs_download_first_with_reverse_flag(self, settings):
        timeline = []
        emitter = ProgressEmitter(lambda m: timeline.append(("emit", m.data)))
        runner = FakeRunner(
            ScriptedProcess(output=iperf_output(duration=3, reverse=True)),
            ScriptedProcess(output=iperf_output(duration=3)),
            timeline=timeline,
        )
        await SpeedTest(runner, emitter, settings).run(TARGET, duration=3, reverse=True)

        spawns = [i for i, entry in enumerate(timeline) if entry[0] == "spawn"]
        assert "-R" in timeline[spawns[0]][2]
        assert "-R" not in timeline[spawns[1]][2]

        halfway = [
            i for i, entry in enumerate(timeline)
            if entry[0] == "emit" and entry[1].phase is None and entry[1].percent == 50.0
        ]
        assert len(halfway) == 1
        assert spawns[0] < halfway[0] < spawns[1]

    async def test_phase_one_events_precede_phase_two(self, emitter, messages, settings):
        runner = FakeRunner(
            ScriptedProcess(output=iperf_output(duration=4)),
            ScriptedProcess(output=iperf_output(duration=4)),
        )
        await SpeedTest(runner, emitter, settings).run(TARGET, duration=4)

        phases = [e.phase for e in progress_events(messages) if e.phase is not None]
        first_upload = phases.index(Phase.UPLOAD)
        assert Phase.DOWNLOAD not in phases[first_upload:]

    async def test_milestones_and_phase_progress(self, emitter, messages, settings):
        runner = FakeRunner(
            ScriptedProcess(output=iperf_output(duration=10)),
            ScriptedProcess(output=iperf_output(duration=10)),
        )
        await SpeedTest(runner, emitter, settings).run(TARGET, duration=10)
        events = progress_events(messages)

        milestones = [e.percent for e in events if e.phase is None]
        assert milestones == [0.0, 50.0, 100.0]

        for phase in (Phase.DOWNLOAD, Phase.UPLOAD):
            percents = [e.percent for e in events if e.phase is phase]
            assert percents == sorted(percents)
            assert percents[-1] == 100.0
            assert max(percents[:-1]) <= 95.0

    async def test_first_phase_failure_never_starts_second(self, emitter, messages, settings):
        runner = FakeRunner(
            ScriptedProcess(
                output="Connecting to host 10.0.0.1, port 5201\n",
                return_code=1,
                stderr="iperf3: error - unable to connect to server: Connection refused",
            ),
            ScriptedProcess(output=iperf_output()),
        )
        test = SpeedTest(runner, emitter, settings)

        with pytest.raises(ProcessExitError) as exc_info:
            await test.run(TARGET, duration=10, reverse=True)

        assert len(runner.calls) == 1
        assert exc_info.value.return_code == 1
        assert "Connection refused" in exc_info.value.stderr
        assert test.state is SpeedTestState.FAILED
        assert 50.0 not in [e.percent for e in progress_events(messages) if e.phase is None]

    async def test_missing_summary_fails(self, emitter, settings):
        runner = FakeRunner(ScriptedProcess(output=iperf_output(sender=None, receiver=None)))

        with pytest.raises(ParseError):
            await SpeedTest(runner, emitter, settings).run(TARGET, duration=10)
        assert len(runner.calls) == 1

    async def test_timeout_fails(self, emitter, settings):
        runner = FakeRunner(ScriptedProcess(output=iperf_output(duration=2), timeout=True))

        with pytest.raises(ProcessTimeoutError):
            await SpeedTest(runner, emitter, settings).run(TARGET, duration=2)

    async def test_single_shot(self, emitter, settings):
        runner = FakeRunner(
            ScriptedProcess(output=iperf_output(duration=1)),
            ScriptedProcess(output=iperf_output(duration=1)),
        )
        test = SpeedTest(runner, emitter, settings)
        await test.run(TARGET, duration=1)

        with pytest.raises(RuntimeError):
            await test.run(TARGET, duration=1)

    async def test_parallel_and_force_flush_args(self, emitter):
        from netdash.core.config import EngineSettings

        test = SpeedTest(FakeRunner(), emitter, EngineSettings(force_flush=True))
        args = test.build_args(TARGET, 10, reverse=False, parallel=4)

        assert args[-3:] == ["-P", "4", "--forceflush"]


class TestPingTest:
    """Test the ping orchestrator."""

    async def test_run(self, emitter, messages, settings):
        runner = FakeRunner(ScriptedProcess(output=PING_OUTPUT))
        result = await PingTest(runner, emitter, settings).run(TARGET, count=4)

        assert runner.calls[0][:2] == ("ping", ["-c", "4", "10.0.0.1"])
        assert runner.calls[0][2] == 4 * settings.ping_interval + settings.grace_period
        assert result.packet_loss_pct == 0
        assert result.times.avg == 0.188

        percents = [e.percent for e in progress_events(messages)]
        assert percents == [0.0, 25.0, 50.0, 75.0, 95.0, 100.0]
        assert progress_events(messages)[-1].completed is True

    async def test_nonzero_exit_fails(self, emitter, settings):
        runner = FakeRunner(ScriptedProcess(return_code=2, stderr="ping: unknown host"))

        with pytest.raises(ProcessExitError, match="unknown host"):
            await PingTest(runner, emitter, settings).run(TARGET, count=4)

    async def test_spawn_error(self, emitter, settings):
        runner = FakeRunner(ScriptedProcess(spawn_error=True))

        with pytest.raises(ProcessSpawnError):
            await PingTest(runner, emitter, settings).run(TARGET)


class TestTracerouteTest:
    """Test the traceroute orchestrator."""

    async def test_nonzero_exit_with_hops_is_accepted(self, emitter, messages, settings):
        runner = FakeRunner(ScriptedProcess(output=TRACEROUTE_OUTPUT, return_code=1))
        result = await TracerouteTest(runner, emitter, settings).run(TARGET, max_hops=30)

        assert runner.calls[0][:2] == ("traceroute", ["-n", "-m", "30", "10.0.0.1"])
        assert runner.calls[0][2] == settings.traceroute_timeout
        assert len(result.hops) == 4
        assert result.hops[1].round_trip_times_ms == [-1, -1, -1]

        percents = [e.percent for e in progress_events(messages)]
        assert percents == sorted(percents)
        assert max(percents[:-1]) <= 90.0
        assert percents[-1] == 100.0

    async def test_nonzero_exit_without_hops_fails(self, emitter, settings):
        runner = FakeRunner(
            ScriptedProcess(return_code=2, stderr="traceroute: unknown host nowhere.invalid")
        )

        with pytest.raises(ProcessExitError, match="unknown host"):
            await TracerouteTest(runner, emitter, settings).run(TARGET)

    async def test_clean_exit_without_hops_is_parse_error(self, emitter, settings):
        runner = FakeRunner(ScriptedProcess(output="traceroute to 10.0.0.1 (10.0.0.1), 30 hops max\n"))

        with pytest.raises(ParseError):
            await TracerouteTest(runner, emitter, settings).run(TARGET)


class TestFullTest:
    """Test the ping -> speed -> traceroute sequence."""

    def _successful_runner(self):
        return FakeRunner(
            ScriptedProcess(output=PING_OUTPUT),
            ScriptedProcess(output=iperf_output(duration=2)),
            ScriptedProcess(output=iperf_output(duration=2)),
            ScriptedProcess(output=TRACEROUTE_OUTPUT),
        )

    async def test_runs_in_order(self, emitter, messages, settings):
        runner = self._successful_runner()
        result = await FullTest(runner, emitter, settings).run(TARGET, duration=2, count=4)

        assert runner.commands == ["ping", "iperf3", "iperf3", "traceroute"]
        assert result.ping.times.avg == 0.188
        assert result.speed.download.bandwidth_bps == 9_410_000_000
        assert len(result.traceroute.hops) == 4

    async def test_suite_milestones(self, emitter, messages, settings):
        await FullTest(self._successful_runner(), emitter, settings).run(TARGET, duration=2, count=4)

        suite = {
            "Starting full network test suite": 0.0,
            "Ping test complete, starting speed test": 25.0,
            "Speed test complete, starting traceroute": 75.0,
            "Full test suite complete": 100.0,
        }
        seen = [(e.message, e.percent) for e in progress_events(messages) if e.message in suite]
        assert seen == list(suite.items())

    async def test_ping_failure_aborts_remaining_phases(self, emitter, messages, settings):
        runner = FakeRunner(
            ScriptedProcess(return_code=1, stderr="ping: connect: Network is unreachable"),
            ScriptedProcess(output=iperf_output()),
            ScriptedProcess(output=iperf_output()),
            ScriptedProcess(output=TRACEROUTE_OUTPUT),
        )

        with pytest.raises(ProcessExitError) as exc_info:
            await FullTest(runner, emitter, settings).run(TARGET)

        assert runner.commands == ["ping"]
        assert exc_info.value.command.startswith("ping")
        assert exc_info.value.stderr == "ping: connect: Network is unreachable"
        assert 25.0 not in [e.percent for e in progress_events(messages) if e.phase is None]


class TestEngineFacade:
    """Test TestEngine publishing."""

    async def test_publishes_test_complete_record(self, emitter, messages, settings):
        runner = FakeRunner(ScriptedProcess(output=PING_OUTPUT))
        engine = TestEngine(emitter, settings, runner=runner)
        result = await engine.run_ping_test("10.0.0.1:5202", count=4)

        completes = [m for m in messages if m.type == TEST_COMPLETE]
        assert len(completes) == 1
        record = completes[0].data
        assert isinstance(record, TestRecord)
        assert record.test_type == "ping"
        assert record.target == TestTarget(address="10.0.0.1", port=5202)
        assert record.results == result

        wire = completes[0].to_wire()
        assert wire["type"] == "test_complete"
        assert wire["data"]["testType"] == "ping"
        assert wire["data"]["results"]["packetLossPct"] == 0

    async def test_full_test_publishes_once(self, emitter, messages, settings):
        runner = FakeRunner(
            ScriptedProcess(output=PING_OUTPUT),
            ScriptedProcess(output=iperf_output(duration=2)),
            ScriptedProcess(output=iperf_output(duration=2)),
            ScriptedProcess(output=TRACEROUTE_OUTPUT),
        )
        engine = TestEngine(emitter, settings, runner=runner)
        await engine.run_full_test(TARGET, duration=2, count=4)

        completes = [m for m in messages if m.type == TEST_COMPLETE]
        assert [m.data.test_type for m in completes] == ["full"]

    async def test_failure_publishes_nothing(self, emitter, messages, settings):
        runner = FakeRunner(ScriptedProcess(return_code=1, stderr="boom"))
        engine = TestEngine(emitter, settings, runner=runner)

        with pytest.raises(ProcessExitError):
            await engine.run_traceroute_test(TARGET)
        assert not [m for m in messages if m.type == TEST_COMPLETE]

    async def test_check_connectivity(self, emitter, messages, settings):
        ok = TestEngine(emitter, settings, runner=FakeRunner(ScriptedProcess(output=iperf_output(duration=1))))
        refused = TestEngine(emitter, settings, runner=FakeRunner(ScriptedProcess(return_code=1)))

        assert await ok.check_connectivity(TARGET) is True
        assert await refused.check_connectivity(TARGET) is False
        assert messages == []


class TestTargetParsing:
    """Test TestTarget.parse."""

    @pytest.mark.parametrize(
        "value, address, port",
        [
            ("10.0.0.1", "10.0.0.1", 5201),
            ("10.0.0.1:5202", "10.0.0.1", 5202),
            ("[fe80::1]:5300", "fe80::1", 5300),
            ("fe80::1", "fe80::1", 5201),
        ],
    )
    def test_valid(self, value, address, port):
        target = TestTarget.parse(value)
        assert (target.address, target.port) == (address, port)

    @pytest.mark.parametrize("value", ["10.0.0.2:abc", "10.0.0.2:70000", ":5201", "[fe80::1]:x"])
    def test_invalid_is_typed_error(self, value):
        with pytest.raises(InvalidTargetError) as exc_info:
            TestTarget.parse(value)
        assert exc_info.value.value == value
