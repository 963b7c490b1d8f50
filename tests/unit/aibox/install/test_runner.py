"""Tests for PipelineRunner ordering, abort and interruption."""

import json
import logging
import plistlib
from io import StringIO

import pytest

from aibox.install.actions import Action, EnsureContainer, RunOperations
from aibox.install.executor import AppendLine, Command, Mode, WriteFile
from aibox.install.probes import BinaryOnPath, ContainerState, FileContains, Probe, ServiceRunning
from aibox.install.report import StepOutcome
from aibox.install.runner import PipelineRunner
from aibox.install.steps import Criticality, Step

DOCKER_PS = ("docker", "ps", "-a", "--filter", "name=^open-webui$", "--format", "{{.Names}}\t{{.State}}")
WEBUI_RUN = ("docker", "run", "-d", "--name", "open-webui", "--restart=unless-stopped", "open-webui:main")


class Never(Probe):
    def _check(self, executor):
        return False


def three_steps(third=Criticality.FATAL):
    """brew, colima, open-webui: the smallest useful pipeline."""
    return [
        Step(
            name="brew",
            probe=BinaryOnPath("brew"),
            action=RunOperations(Command(("/bin/bash", "-c", "install-brew"))),
        ),
        Step(
            name="colima",
            probe=ServiceRunning("colima", ("colima", "status")),
            action=RunOperations(Command(("colima", "start"))),
        ),
        Step(
            name="open-webui",
            probe=ContainerState("open-webui", ContainerState.RUNNING),
            action=EnsureContainer("open-webui", "open-webui:main"),
            criticality=third,
        ),
    ]


def step(name, exit_code=0, criticality=Criticality.RECOVERABLE, executor=None):
    argv = ("tool", name)
    if executor is not None:
        executor.respond(argv, exit_code)
    return Step(name=name, probe=Never(), action=RunOperations(Command(argv)), criticality=criticality)


@pytest.fixture
def events_output():
    output = StringIO()
    events_logger = logging.getLogger("aibox.steps")
    events_logger.handlers.clear()
    events_logger.setLevel(logging.DEBUG)
    handler = logging.StreamHandler(output)
    handler.setFormatter(logging.Formatter("%(message)s"))
    events_logger.addHandler(handler)
    return output


def events(output):
    return [json.loads(line) for line in output.getvalue().splitlines()]


class TestDryRun:
    def test_dry_run_spawns_nothing(self, dry_executor, bin_dir, transcript_output):
        report = PipelineRunner(dry_executor).execute(three_steps())

        assert [r.outcome for r in report.results] == [StepOutcome.SIMULATED] * 3
        assert report.exit_code == 0
        assert report.mode is Mode.DRY_RUN
        assert dry_executor.spawned == []
        assert report.results[2].commands == (" ".join(WEBUI_RUN),)

    def test_dry_run_announces_each_mutation(self, dry_executor, bin_dir, transcript, transcript_output):
        PipelineRunner(dry_executor, transcript=transcript).execute(three_steps())

        out = transcript_output.getvalue()
        assert "[DRY-RUN] Would: /bin/bash -c install-brew" in out
        assert "[DRY-RUN] Would: colima start" in out
        assert "[DRY-RUN] Would: docker run -d --name open-webui" in out


class TestLive:
    def test_fatal_failure_aborts(self, live_executor, bin_dir):
        live_executor.respond(("/bin/bash", "-c", "install-brew"), 0)
        live_executor.respond(("colima", "status"), 1)
        live_executor.respond(("colima", "start"), 0)
        live_executor.respond(DOCKER_PS, 0, "")
        live_executor.respond(WEBUI_RUN, 125, "", "image not found")
        steps = three_steps() + [step("later", executor=live_executor)]

        report = PipelineRunner(live_executor).execute(steps)

        assert [r.outcome for r in report.results] == [
            StepOutcome.APPLIED,
            StepOutcome.APPLIED,
            StepOutcome.FAILED,
        ]
        assert report.aborted
        assert report.aborted_by == "open-webui"
        assert report.exit_code == 1
        assert ("tool", "later") not in live_executor.spawned_argv

    def test_recoverable_failure_continues(self, live_executor):
        steps = [
            step("a", executor=live_executor),
            step("b", exit_code=1, executor=live_executor),
            step("c", executor=live_executor),
        ]

        report = PipelineRunner(live_executor).execute(steps)

        assert [r.outcome for r in report.results] == [
            StepOutcome.APPLIED,
            StepOutcome.FAILED,
            StepOutcome.APPLIED,
        ]
        assert not report.aborted
        assert report.exit_code == 0
        assert len(report.failed) == 1

    def test_non_utf8_host_files_do_not_crash(self, live_executor, tmp_path):
        profile = tmp_path / ".zprofile"
        profile.write_bytes(b"# caf\xe9\nexport A=1\n")
        plist = tmp_path / "com.colima.autostart.plist"
        plist.write_bytes(plistlib.dumps({"Label": "com.colima.autostart"}, fmt=plistlib.FMT_BINARY))
        steps = [
            Step(name="profile", probe=Never(), action=RunOperations(AppendLine(profile, "line"))),
            Step(
                name="agent",
                probe=FileContains(plist, "<plist/>", exact=True),
                action=RunOperations(WriteFile(plist, "<plist/>")),
            ),
        ]

        report = PipelineRunner(live_executor).execute(steps)

        assert [r.outcome for r in report.results] == [StepOutcome.APPLIED] * 2
        assert profile.read_bytes() == b"# caf\xe9\nexport A=1\nline\n"
        assert plist.read_text() == "<plist/>"

    def test_order_preserved(self, live_executor):
        names = ["one", "two", "three", "four"]
        steps = [step(n, executor=live_executor) for n in names]

        report = PipelineRunner(live_executor).execute(steps)

        assert report.step_names == names
        assert live_executor.spawned_argv == [("tool", n) for n in names]

    def test_fatal_step_that_succeeds_does_not_abort(self, live_executor):
        steps = [step("a", criticality=Criticality.FATAL, executor=live_executor), step("b", executor=live_executor)]
        report = PipelineRunner(live_executor).execute(steps)
        assert report.step_names == ["a", "b"]
        assert report.exit_code == 0

    def test_second_run_is_all_satisfied(self, live_executor, install_tool):
        host = {"colima": False}

        def colima_status(command):
            return (0 if host["colima"] else 1, "", "")

        def colima_start(command):
            host["colima"] = True
            return (0, "", "")

        def install_brew(command):
            install_tool("brew")
            return (0, "", "")

        live_executor.responses.update({
            ("colima", "status"): colima_status,
            ("colima", "start"): colima_start,
            ("/bin/bash", "-c", "install-brew"): install_brew,
        })
        steps = three_steps()[:2]

        first = PipelineRunner(live_executor).execute(steps)
        live_executor.spawned.clear()
        second = PipelineRunner(live_executor).execute(steps)

        assert [r.outcome for r in first.results] == [StepOutcome.APPLIED] * 2
        assert [r.outcome for r in second.results] == [StepOutcome.ALREADY_SATISFIED] * 2
        assert live_executor.mutations == []


class TestInterruption:
    def test_stop_request_skips_remaining_steps(self, live_executor):
        runner = PipelineRunner(live_executor)

        class StopAfter(Action):
            def plan(self, executor):
                runner.request_stop()
                return [Command(("tool", "first"))]

        live_executor.respond(("tool", "first"), 0)
        steps = [
            Step(name="first", probe=Never(), action=StopAfter()),
            step("second", executor=live_executor),
        ]

        report = runner.execute(steps)

        assert report.step_names == ["first"]
        assert report.results[0].outcome == StepOutcome.APPLIED
        assert report.interrupted
        assert report.exit_code == 130

    def test_stop_on_last_step_is_not_interruption(self, live_executor):
        runner = PipelineRunner(live_executor)

        class StopAfter(Action):
            def plan(self, executor):
                runner.request_stop()
                return []

        report = runner.execute([Step(name="only", probe=Never(), action=StopAfter())])

        assert not report.interrupted
        assert report.exit_code == 0

    def test_signal_requests_stop(self, live_executor):
        import signal

        runner = PipelineRunner(live_executor)
        previous = signal.getsignal(signal.SIGTERM)

        class Raise(Action):
            def plan(self, executor):
                signal.raise_signal(signal.SIGTERM)
                return []

        live_executor.respond(("tool", "b"), 0)
        report = runner.execute([
            Step(name="a", probe=Never(), action=Raise()),
            step("b", executor=live_executor),
        ])

        assert report.interrupted
        assert report.step_names == ["a"]
        assert signal.getsignal(signal.SIGTERM) == previous


class TestReporting:
    def test_transcript_lines(self, live_executor, transcript, transcript_output):
        steps = [
            Step(name="ok", title="Thing", probe=Never(), action=RunOperations(Command(("tool", "ok")))),
            Step(
                name="bad",
                title="Docker",
                probe=Never(),
                action=RunOperations(Command(("tool", "bad"))),
                criticality=Criticality.FATAL,
                remediation="Docker is not responding. Check Colima status.",
            ),
        ]
        live_executor.respond(("tool", "ok"), 0)
        live_executor.respond(("tool", "bad"), 1)

        PipelineRunner(live_executor, transcript=transcript).execute(steps)

        lines = transcript_output.getvalue().splitlines()
        assert lines[0] == "[INFO] Checking Thing..."
        assert lines[1] == "[SUCCESS] Thing set up"
        assert lines[2] == "[INFO] Checking Docker..."
        assert lines[3].startswith("[ERROR] Docker failed: tool bad exited with status 1")
        assert lines[4] == "[ERROR] Docker is not responding. Check Colima status."

    def test_step_events_logged(self, live_executor, events_output):
        live_executor.respond(("tool", "a"), 0)
        live_executor.respond(("tool", "b"), 1)
        steps = [step("a"), step("b", criticality=Criticality.FATAL)]

        PipelineRunner(live_executor).execute(steps)

        logged = events(events_output)
        assert [e["event"] for e in logged] == [
            "run.started",
            "step.applied",
            "step.failed",
            "run.completed",
        ]
        assert logged[0]["step_count"] == 2
        assert logged[2]["level"] == "error"
        assert logged[3]["aborted_by"] == "b"
        assert logged[3]["counts"]["failed"] == 1

    def test_check_reports_status_without_actions(self, live_executor, install_tool):
        install_tool("brew")
        live_executor.respond(("colima", "status"), 1)
        runner = PipelineRunner(live_executor)

        status = runner.check(three_steps())

        assert status == {"brew": True, "colima": False, "open-webui": False}
        assert runner.pending(status) == ["colima", "open-webui"]
        assert live_executor.mutations == []
