"""
aibox - provision a local AI workstation.

Installs and configures, idempotently and in order: Xcode Command Line
Tools, Homebrew, the Colima container runtime with the Docker CLI, Ollama
with a default model, and the Open WebUI chat interface.

Example usage:
    from aibox import get_config, build_steps, CommandExecutor, Mode, PipelineRunner

    config = get_config()
    executor = CommandExecutor(Mode.DRY_RUN)
    report = PipelineRunner(executor).execute(build_steps(config))
    for result in report.results:
        print(result.step_name, result.outcome.value, result.commands)
"""

__version__ = "0.1.0"
__all__ = [
    "get_config",
    "build_steps",
    "CommandExecutor",
    "Mode",
    "PipelineRunner",
    "RunReport",
    "__version__",
]


# Lazy imports keep `aibox --version` from loading the whole pipeline
def __getattr__(name: str):
    if name == "get_config":
        from aibox.config import get_config
        return get_config
    if name == "build_steps":
        from aibox.install.workstation import build_steps
        return build_steps
    if name in ("CommandExecutor", "Mode"):
        from aibox.install import executor
        return getattr(executor, name)
    if name == "PipelineRunner":
        from aibox.install.runner import PipelineRunner
        return PipelineRunner
    if name == "RunReport":
        from aibox.install.report import RunReport
        return RunReport
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
