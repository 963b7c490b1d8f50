"""
Provisioning stages for a local AI workstation.

Declares, in order, the steps that take an Apple Silicon Mac from a fresh
install to a running Ollama server with the Open WebUI chat interface:

    xcode-clt, homebrew, colima-install, colima-start, docker-ready,
    colima-autostart, ollama-install, ollama-host, ollama-service,
    ollama-model, open-webui, workspace-dirs, utilities

Each step is built from configuration only; nothing here touches the host.
``discover_endpoints`` produces the connection info printed after a run.
"""

from __future__ import annotations

import getpass
import os
import plistlib
from dataclasses import dataclass
from pathlib import Path
from typing import List

from aibox.config import AiboxConfig
from aibox.errors import ExecutionError
from aibox.install.actions import EnsureContainer, InstallMissing, RunOperations
from aibox.install.executor import (
    AppendLine,
    Command,
    CommandExecutor,
    MakeDirs,
    WriteFile,
)
from aibox.install.probes import (
    AllOf,
    ArtifactPresent,
    BinaryOnPath,
    CommandSucceeds,
    ConfigFlagSet,
    ContainerState,
    FileContains,
    HttpReady,
    PathPresent,
    Poll,
    ServiceRunning,
)
from aibox.install.steps import Criticality, Step

__all__ = [
    "STEP_NAMES",
    "Endpoint",
    "build_steps",
    "discover_endpoints",
    "render_autostart_plist",
]

STEP_NAMES = (
    "xcode-clt",
    "homebrew",
    "colima-install",
    "colima-start",
    "docker-ready",
    "colima-autostart",
    "ollama-install",
    "ollama-host",
    "ollama-service",
    "ollama-model",
    "open-webui",
    "workspace-dirs",
    "utilities",
)

UNKNOWN_ADDRESS = "YOUR_IP"
XCODE_POLL_INTERVAL_S = 5.0
WEBUI_CONTAINER_PORT = 8080
SYSTEM_PATH = "/usr/local/bin:/usr/bin:/bin:/usr/sbin:/sbin"


def _criticality(config: AiboxConfig, name: str) -> Criticality:
    if name in config.fatal_steps:
        return Criticality.FATAL
    return Criticality.RECOVERABLE


def render_autostart_plist(config: AiboxConfig, home: Path, user: str) -> str:
    """launchd agent that starts Colima shortly after login."""
    colima = config.brew_bin / "colima"
    start = (
        f"sleep {config.autostart_delay_seconds} && {colima} start "
        f"--cpu {config.colima_cpu} --memory {config.colima_memory}"
    )
    agent = {
        "Label": config.autostart_label,
        "ProgramArguments": ["/bin/zsh", "-c", start],
        "RunAtLoad": True,
        "EnvironmentVariables": {
            "PATH": f"{config.brew_bin}:{SYSTEM_PATH}",
            "HOME": str(home),
            "USER": user,
        },
        "StandardOutPath": "/tmp/colima.out.log",
        "StandardErrorPath": "/tmp/colima.err.log",
    }
    return plistlib.dumps(agent).decode("utf-8")


def build_steps(config: AiboxConfig) -> List[Step]:
    """The workstation pipeline, in execution order."""
    timeout = config.command_timeout_seconds
    brew = str(config.brew_bin / "brew")
    shellenv_line = f'eval "$({brew} shellenv)"'

    uid = os.getuid()
    domain = f"gui/{uid}"
    plist_path = config.autostart_plist_path()
    plist_text = render_autostart_plist(config, Path.home(), getpass.getuser())
    agent_loaded = CommandSucceeds(("launchctl", "print", f"{domain}/{config.autostart_label}"))

    model_present = ArtifactPresent(config.ollama_model, ("ollama", "list"))
    webui_running = ContainerState(config.webui_container, ContainerState.RUNNING)
    workspace = [Path(d) for d in config.workspace_dirs]

    steps = [
        Step(
            name="xcode-clt",
            title="Xcode Command Line Tools",
            probe=CommandSucceeds(("xcode-select", "-p")),
            action=RunOperations(Command(("xcode-select", "--install"), timeout=timeout)),
            # The installer runs in its own dialog; wait for it to finish
            verify=Poll(
                CommandSucceeds(("xcode-select", "-p")),
                attempts=config.xcode_wait_attempts,
                interval=XCODE_POLL_INTERVAL_S,
            ),
            remediation="Click 'Install' in the dialog, wait for it to finish, then run aibox again.",
        ),
        Step(
            name="homebrew",
            title="Homebrew",
            probe=BinaryOnPath("brew"),
            action=RunOperations(
                Command(
                    ("/bin/bash", "-c", f'/bin/bash -c "$(curl -fsSL {config.brew_install_url})"'),
                    interactive=True,
                    timeout=timeout,
                ),
                AppendLine(Path(config.shell_profile), shellenv_line),
            ),
            verify=BinaryOnPath("brew"),
            remediation=f"Install Homebrew manually from https://brew.sh (expected at {brew}).",
        ),
        Step(
            name="colima-install",
            title="Colima and Docker",
            probe=BinaryOnPath("colima"),
            action=RunOperations(
                Command(("brew", "install", "colima", "docker", "docker-compose"), timeout=timeout),
            ),
            verify=BinaryOnPath("colima"),
        ),
        Step(
            name="colima-start",
            title="Colima VM",
            probe=ServiceRunning("colima", ("colima", "status")),
            action=RunOperations(
                Command(
                    (
                        "colima", "start",
                        "--cpu", str(config.colima_cpu),
                        "--memory", str(config.colima_memory),
                        "--disk", str(config.colima_disk),
                    ),
                    timeout=timeout,
                ),
            ),
            verify=ServiceRunning("colima", ("colima", "status")),
        ),
        Step(
            name="docker-ready",
            title="Docker",
            probe=CommandSucceeds(("docker", "ps")),
            action=RunOperations(
                Command(("docker", "context", "use", "colima"), check=False),
            ),
            verify=CommandSucceeds(("docker", "ps")),
            remediation="Docker is not responding. Check Colima status.",
        ),
        Step(
            name="colima-autostart",
            title="Colima autostart on boot",
            probe=AllOf(FileContains(plist_path, plist_text, exact=True), agent_loaded),
            action=RunOperations(
                WriteFile(plist_path, plist_text),
                Command(("launchctl", "bootout", f"{domain}/{config.autostart_label}"), check=False),
                Command(("launchctl", "bootstrap", domain, str(plist_path))),
            ),
            verify=agent_loaded,
        ),
        Step(
            name="ollama-install",
            title="Ollama",
            probe=BinaryOnPath("ollama"),
            action=RunOperations(Command(("brew", "install", "ollama"), timeout=timeout)),
            verify=BinaryOnPath("ollama"),
        ),
        Step(
            name="ollama-host",
            title="Ollama network access",
            probe=ConfigFlagSet(
                "OLLAMA_HOST", config.ollama_host, ("launchctl", "getenv", "OLLAMA_HOST")
            ),
            action=RunOperations(
                Command(("launchctl", "setenv", "OLLAMA_HOST", config.ollama_host)),
            ),
        ),
        Step(
            name="ollama-service",
            title="Ollama service",
            probe=ServiceRunning("ollama", ("brew", "services", "list"), pattern=r"^ollama\s+started\b"),
            action=RunOperations(Command(("brew", "services", "start", "ollama"), timeout=timeout)),
            verify=Poll(
                HttpReady(f"{config.ollama_url}/api/tags", timeout=config.http_timeout_seconds),
                attempts=config.ready_attempts,
                interval=config.ready_interval_seconds,
            ),
            remediation=f"Check `brew services info ollama` and {config.brew_prefix}/var/log/ollama.log.",
        ),
        Step(
            name="ollama-model",
            title=f"{config.ollama_model} model",
            probe=model_present,
            action=RunOperations(
                Command(("ollama", "pull", config.ollama_model), interactive=True, timeout=timeout),
            ),
            verify=model_present,
        ),
        Step(
            name="open-webui",
            title="Open WebUI",
            probe=webui_running,
            action=EnsureContainer(
                config.webui_container,
                config.webui_image,
                ports={config.webui_port: WEBUI_CONTAINER_PORT},
                volumes={Path(config.webui_data_dir): "/app/backend/data"},
                env={"OLLAMA_BASE_URL": f"http://host.docker.internal:{config.ollama_port}"},
                timeout=timeout,
            ),
            verify=webui_running,
        ),
        Step(
            name="workspace-dirs",
            title="Directory structure",
            probe=PathPresent(*workspace),
            action=RunOperations(MakeDirs(tuple(workspace))),
            verify=PathPresent(*workspace),
        ),
        Step(
            name="utilities",
            title="Utilities",
            probe=AllOf(*(BinaryOnPath(u) for u in config.utilities)),
            action=InstallMissing(config.utilities, timeout=timeout),
            verify=AllOf(*(BinaryOnPath(u) for u in config.utilities)),
        ),
    ]

    for step in steps:
        step.criticality = _criticality(config, step.name)
    return steps


# ---------------------------------------------------------------------------
# Connection info
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Endpoint:
    """A service URL reachable locally and from the LAN."""
    name: str
    local_url: str
    lan_url: str


def lan_address(executor: CommandExecutor, interface: str) -> str:
    """IPv4 address of ``interface``, or a placeholder when unknown."""
    command = Command(("ipconfig", "getifaddr", interface), read_only=True)
    try:
        outcome = executor.run(command)
    except ExecutionError:
        return UNKNOWN_ADDRESS
    address = outcome.stdout.strip()
    if outcome.simulated or not outcome.ok or not address:
        return UNKNOWN_ADDRESS
    return address


def discover_endpoints(config: AiboxConfig, executor: CommandExecutor) -> List[Endpoint]:
    """Connection endpoints of the provisioned services."""
    address = lan_address(executor, config.network_interface)
    return [
        Endpoint(
            name="Ollama API",
            local_url=config.ollama_url,
            lan_url=f"http://{address}:{config.ollama_port}",
        ),
        Endpoint(
            name="Open WebUI",
            local_url=config.webui_url,
            lan_url=f"http://{address}:{config.webui_port}",
        ),
    ]
