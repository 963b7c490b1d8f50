"""
aibox CLI - provision a local AI workstation.

Usage::

    aibox                 # install everything that is missing
    aibox --dry-run       # show what would be done, change nothing
    aibox --check         # only report which steps are already in place
    aibox -y --report run.json

Safe to run repeatedly: every step checks whether its goal is already met
before doing anything.
"""

from __future__ import annotations

import logging
import platform
from pathlib import Path
from typing import List, Optional

import click

from aibox import __version__
from aibox.config import AiboxConfig, get_config
from aibox.console import Transcript
from aibox.install.executor import CommandExecutor, Mode
from aibox.install.report import RunReport, render_summary, save_report
from aibox.install.runner import PipelineRunner
from aibox.install.workstation import Endpoint, build_steps, discover_endpoints
from aibox.logger import StepLogger, configure_logging

logger = logging.getLogger(__name__)

COMPONENTS = (
    "Xcode Command Line Tools",
    "Homebrew (package manager)",
    "Colima (Docker runtime)",
    "Docker & Docker Compose",
    "Ollama (local LLM server)",
    "Open WebUI (chat interface)",
)

QUICK_COMMANDS = (
    ("ollama list", "See downloaded models"),
    ("ollama pull <model>", "Download a new model"),
    ("ollama run <model>", "Chat with a model in terminal"),
    ("docker ps", "See running containers"),
    ("docker stats", "Monitor container resources"),
)

RECOMMENDED_MODELS = (
    ("mistral", "Good general purpose"),
    ("llama3.1:8b", "Larger, better reasoning"),
    ("codellama", "Coding focused"),
)


def make_executor(config: AiboxConfig, mode: Mode, transcript: Transcript) -> CommandExecutor:
    """The single executor of a run; the mode is fixed here."""
    return CommandExecutor(
        mode,
        transcript=transcript,
        extra_path=[config.brew_bin],
        default_timeout=config.command_timeout_seconds,
        probe_timeout=config.probe_timeout_seconds,
        run_queries_in_dry_run=config.dry_run_probes,
    )


def _print_banner(transcript: Transcript, mode: Mode) -> None:
    transcript.heading("Mac AI Server Setup")
    if mode is Mode.DRY_RUN:
        transcript.notice("   *** DRY-RUN MODE - No changes will be made ***")
        transcript.echo()
    transcript.echo("This will install:")
    for component in COMPONENTS:
        transcript.echo(f"  • {component}")
    transcript.echo()


def _print_connection_info(transcript: Transcript, endpoints: List[Endpoint]) -> None:
    transcript.echo("Your services are running at:")
    transcript.echo()
    for endpoint in endpoints:
        transcript.echo(f"  {endpoint.name + ':':<14} {endpoint.local_url}")
        transcript.echo(f"  {'':<14} {endpoint.lan_url} (from other devices)")
        transcript.echo()
    transcript.echo("Quick commands:")
    transcript.echo()
    for command, what in QUICK_COMMANDS:
        transcript.echo(f"  {command:<24} # {what}")
    transcript.echo()
    transcript.echo("Recommended models to try:")
    transcript.echo()
    for model, what in RECOMMENDED_MODELS:
        transcript.echo(f"  {'ollama pull ' + model:<24} # {what}")
    transcript.echo()


def _finish(transcript: Transcript, report: RunReport, use_colors: bool) -> None:
    transcript.echo()
    transcript.echo(render_summary(report, use_colors=use_colors))
    if report.aborted:
        transcript.error(f"Setup stopped at '{report.aborted_by}'. Fix the problem above and re-run.")
    elif report.interrupted:
        transcript.warning("Setup interrupted. Re-run aibox to continue where it stopped.")


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--dry-run", "-n", is_flag=True, help="Show what would be done without changing anything.")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation before starting.")
@click.option("--check", is_flag=True, help="Only report which steps are already in place.")
@click.option(
    "--report",
    "report_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write the run report as JSON to this file.",
)
@click.option("--no-color", is_flag=True, help="Disable colored output.")
@click.version_option(__version__, prog_name="aibox")
@click.pass_context
def main(
    ctx: click.Context,
    dry_run: bool,
    yes: bool,
    check: bool,
    report_path: Optional[Path],
    no_color: bool,
) -> None:
    """Set up Homebrew, Colima (Docker), Ollama and Open WebUI on this Mac."""
    config = get_config()
    configure_logging(config.log_level, config.log_format, config.event_log)

    use_colors = not no_color
    transcript = Transcript(use_colors=use_colors)
    mode = Mode.DRY_RUN if dry_run else Mode.LIVE
    executor = make_executor(config, mode, transcript)
    runner = PipelineRunner(executor, transcript=transcript, events=StepLogger(mode=mode.value))
    steps = build_steps(config)

    if platform.system() != "Darwin":
        transcript.warning(f"aibox targets macOS; this is {platform.system()}.")

    if check:
        status = runner.check(steps)
        pending = runner.pending(status)
        transcript.echo()
        if pending:
            transcript.info(f"{len(pending)} of {len(status)} steps pending: {', '.join(pending)}")
        else:
            transcript.success(f"All {len(status)} steps in place")
        ctx.exit(1 if pending else 0)

    _print_banner(transcript, mode)
    if not yes:
        click.prompt(
            "Press Enter to continue or Ctrl+C to cancel",
            default="",
            show_default=False,
            prompt_suffix="...",
        )

    report = runner.execute(steps)
    _finish(transcript, report, use_colors)

    if report_path is not None:
        save_report(report, report_path)
        logger.info("Report written to %s", report_path)

    if report.exit_code == 0:
        transcript.heading("Setup Complete!" if mode is Mode.LIVE else "Dry Run Complete!")
        _print_connection_info(transcript, discover_endpoints(config, executor))
        transcript.success("Enjoy your local AI server!")

    ctx.exit(report.exit_code)


if __name__ == "__main__":
    main()
