"""Tests for CommandDescriptor validation and category derivation."""

import pytest
from pydantic import ValidationError

from switchboard.descriptor import (
    DEFAULT_CATEGORY,
    CommandDescriptor,
    CommandFlag,
    derive_category,
    flags_from_source,
)


async def _noop(client, message, args):
    return None


class TestCommandDescriptor:

    def test_defaults(self):
        d = CommandDescriptor(name="ping", handler=_noop)
        assert d.category == DEFAULT_CATEGORY
        assert d.cooldown_seconds == 0
        assert d.aliases == frozenset()
        assert d.flags == frozenset()
        assert d.required_user_permissions == ()

    def test_name_is_normalized(self):
        d = CommandDescriptor(name="  PiNg ", handler=_noop)
        assert d.name == "ping"

    @pytest.mark.parametrize("bad", ["", "   ", "two words"])
    def test_invalid_names_rejected(self, bad):
        with pytest.raises(ValidationError):
            CommandDescriptor(name=bad, handler=_noop)

    def test_aliases_normalized_and_own_name_dropped(self):
        d = CommandDescriptor(name="help", aliases=["H", "Commands", "help"], handler=_noop)
        assert d.aliases == frozenset({"h", "commands"})
        assert d.tokens == frozenset({"help", "h", "commands"})

    def test_single_string_alias_accepted(self):
        d = CommandDescriptor(name="ping", aliases="latency", handler=_noop)
        assert d.aliases == frozenset({"latency"})

    def test_non_string_alias_rejected(self):
        with pytest.raises(ValidationError):
            CommandDescriptor(name="ping", aliases=[1], handler=_noop)

    def test_negative_cooldown_rejected(self):
        with pytest.raises(ValidationError):
            CommandDescriptor(name="ping", cooldown_seconds=-1, handler=_noop)

    def test_handler_must_be_callable(self):
        with pytest.raises(ValidationError):
            CommandDescriptor(name="ping", handler="not callable")

    def test_permissions_accept_single_string(self):
        d = CommandDescriptor(
            name="prefix",
            required_user_permissions="Administrator",
            required_bot_permissions=["SendMessages", "EmbedLinks"],
            handler=_noop,
        )
        assert d.required_user_permissions == ("Administrator",)
        assert d.required_bot_permissions == ("SendMessages", "EmbedLinks")

    def test_descriptor_is_frozen(self):
        d = CommandDescriptor(name="ping", handler=_noop)
        with pytest.raises(ValidationError):
            d.name = "pong"

    def test_unreachable_when_guild_and_dm_only(self):
        flags = flags_from_source(guild_only=True, dm_only=True)
        d = CommandDescriptor(name="odd", flags=flags, handler=_noop)
        assert d.unreachable
        assert d.has_flag(CommandFlag.GUILD_ONLY)


class TestHelpers:

    def test_flags_from_source(self):
        flags = flags_from_source(developer_only=True, disabled=True)
        assert flags == frozenset({CommandFlag.DEVELOPER_ONLY, CommandFlag.DISABLED})
        assert flags_from_source() == frozenset()

    def test_category_from_directory(self, tmp_path):
        path = tmp_path / "owners" / "prefix.py"
        assert derive_category(path, tmp_path) == "Owners"

    def test_category_uses_innermost_directory(self, tmp_path):
        path = tmp_path / "fun" / "games" / "dice.py"
        assert derive_category(path, tmp_path) == "Games"

    def test_file_in_root_is_misc(self, tmp_path):
        assert derive_category(tmp_path / "ping.py", tmp_path) == "Misc"

    def test_file_outside_root_is_misc(self, tmp_path):
        root = tmp_path / "commands"
        root.mkdir()
        assert derive_category(tmp_path / "elsewhere" / "x.py", root) == "Misc"
