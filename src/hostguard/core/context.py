"""Per-invocation state shared by the executor, probes and fixes."""

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from hostguard.core.config import AppConfig, DEFAULT_CONFIG_PATH
from hostguard.core.output import Console, console, Verbosity


@dataclass
class ExecutionContext:
    """Flags of one `hostguard` run plus its lazily loaded config.

    Creating a context reconfigures the shared console, so a context built
    by the CLI and one built by the dashboard server print the same way.
    """

    dry_run: bool = False  # mutating commands are announced, not run
    yes: bool = False
    verbosity: int = Verbosity.NORMAL
    no_color: bool = False
    config_path: Path = field(default_factory=lambda: DEFAULT_CONFIG_PATH)

    _config: Optional[AppConfig] = field(default=None, repr=False)
    _console: Console = field(default_factory=lambda: console, repr=False)

    def __post_init__(self) -> None:
        self._console.configure(self.verbosity, dry_run=self.dry_run, no_color=self.no_color)

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path)
        return self._config

    @property
    def console(self) -> Console:
        return self._console

    @property
    def is_verbose(self) -> bool:
        return self.verbosity >= Verbosity.VERBOSE

    @property
    def is_debug(self) -> bool:
        return self.verbosity >= Verbosity.DEBUG

    def with_config(self, config: AppConfig) -> "ExecutionContext":
        """Same flags, different settings."""
        return replace(self, _config=config)


def create_context(
    dry_run: bool = False,
    yes: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Map global CLI options onto a context.

    `-q` wins over any number of `-v`; verbosity tops out at DEBUG.
    """
    level = Verbosity.QUIET if quiet else Verbosity(min(Verbosity.NORMAL + verbose, Verbosity.DEBUG))
    return ExecutionContext(
        dry_run=dry_run,
        yes=yes,
        verbosity=level,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
    )
