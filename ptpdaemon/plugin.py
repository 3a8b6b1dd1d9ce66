"""Hardware plugin hooks invoked around PTP profile handling."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

ConfigChangeHook = Callable[[Any, Any], None]
AfterRunHook = Callable[[Any, Any, str], None]
HwConfigHook = Callable[[Any, list], None]
PluginFactory = Callable[[str], "Plugin"]


@dataclass
class Plugin:
    """A named plugin with its options and optional hooks.

    Each hook receives the plugin's options first; hooks signal failure by
    raising.
    """

    name: str
    options: Any = None
    config_change_hook: Optional[ConfigChangeHook] = None
    after_run_hook: Optional[AfterRunHook] = None
    hw_config_hook: Optional[HwConfigHook] = None

    def on_config_change(self, profile: Any) -> None:
        """Run the hook for a changed PTP profile, if any."""
        if self.config_change_hook is not None:
            self.config_change_hook(self.options, profile)

    def after_run_command(self, profile: Any, command: str) -> None:
        """Run the hook that follows starting a PTP command, if any."""
        if self.after_run_hook is not None:
            self.after_run_hook(self.options, profile, command)

    def populate_hw_config(self, hw_configs: list) -> None:
        """Let the plugin add entries to ``hw_configs`` in place."""
        if self.hw_config_hook is not None:
            self.hw_config_hook(self.options, hw_configs)