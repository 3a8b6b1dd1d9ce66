import pytest

from ptpdaemon.plugin import Plugin


def test_config_change_hook_receives_options_and_profile():
    calls = []
    plugin = Plugin(
        name="e810",
        options={"pins": 1},
        config_change_hook=lambda opts, profile: calls.append((opts, profile)),
    )
    plugin.on_config_change("profile-a")
    assert calls == [({"pins": 1}, "profile-a")]


def test_after_run_hook_receives_command():
    calls = []
    plugin = Plugin(
        name="e810",
        options="opts",
        after_run_hook=lambda opts, profile, cmd: calls.append((opts, profile, cmd)),
    )
    plugin.after_run_command("profile-a", "ts2phc")
    assert calls == [("opts", "profile-a", "ts2phc")]


def test_populate_hw_config_mutates_list():
    def hook(opts, configs):
        configs.append({"name": opts})

    plugin = Plugin(name="e810", options="nic", hw_config_hook=hook)
    configs = [{"name": "existing"}]
    plugin.populate_hw_config(configs)
    assert configs == [{"name": "existing"}, {"name": "nic"}]


def test_missing_hook_leaves_list_untouched():
    plugin = Plugin(name="none")
    configs = [1, 2]
    plugin.populate_hw_config(configs)
    assert configs == [1, 2]


def test_hook_error_propagates():
    def failing(opts, profile):
        raise RuntimeError("bad profile")

    plugin = Plugin(name="e810", config_change_hook=failing)
    with pytest.raises(RuntimeError, match="bad profile"):
        plugin.on_config_change("profile-a")