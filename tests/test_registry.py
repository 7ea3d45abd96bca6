"""Tests for the command registry."""

import pytest

from switchboard.descriptor import CommandDescriptor
from switchboard.exceptions import AliasConflict, NameConflict
from switchboard.registry import CommandRegistry


async def _noop(client, message, args):
    return None


def _descriptor(name, aliases=(), **fields):
    return CommandDescriptor(name=name, aliases=list(aliases), handler=_noop, **fields)


def _assert_no_dangling(registry):
    snap = registry.snapshot
    assert set(snap.aliases.values()) <= set(snap.names)
    assert set(snap.origins) == set(snap.names)


class TestRegister:

    def test_resolves_name_and_alias_case_insensitively(self):
        reg = CommandRegistry()
        ping = _descriptor("ping", aliases=["latency"])
        reg.register(ping, "a.py")

        assert reg.resolve("PING") is ping
        assert reg.resolve("Latency") is ping
        assert reg.resolve("pong") is None

    def test_name_owned_by_other_origin_raises_and_keeps_first(self):
        reg = CommandRegistry()
        first = _descriptor("foo", aliases=["f"])
        reg.register(first, "one.py")

        with pytest.raises(NameConflict) as exc_info:
            reg.register(_descriptor("foo", aliases=["g"]), "two.py")

        assert exc_info.value.owner == "one.py"
        assert reg.resolve("foo") is first
        assert reg.resolve("g") is None
        _assert_no_dangling(reg)

    def test_same_origin_reregister_releases_old_aliases(self):
        reg = CommandRegistry()
        reg.register(_descriptor("foo", aliases=["a", "b"]), "foo.py")
        updated = _descriptor("foo", aliases=["c"])
        reg.register(updated, "foo.py")

        assert reg.resolve("a") is None
        assert reg.resolve("b") is None
        assert reg.resolve("c") is updated
        _assert_no_dangling(reg)

    def test_alias_equal_to_existing_name_raises(self):
        reg = CommandRegistry()
        reg.register(_descriptor("help"), "help.py")

        with pytest.raises(AliasConflict) as exc_info:
            reg.register(_descriptor("info", aliases=["help"]), "info.py")

        assert exc_info.value.alias == "help"
        assert "info" not in reg

    def test_alias_held_by_other_command_raises(self):
        reg = CommandRegistry()
        reg.register(_descriptor("ping", aliases=["p"]), "ping.py")

        with pytest.raises(AliasConflict):
            reg.register(_descriptor("prefix", aliases=["p"]), "prefix.py")

        assert reg.resolve("p").name == "ping"

    def test_name_equal_to_existing_alias_raises(self):
        reg = CommandRegistry()
        reg.register(_descriptor("help", aliases=["commands"]), "help.py")

        with pytest.raises(AliasConflict):
            reg.register(_descriptor("commands"), "commands.py")

        assert reg.resolve("commands").name == "help"

    def test_failed_register_does_not_publish(self):
        reg = CommandRegistry()
        reg.register(_descriptor("ping", aliases=["p"]), "ping.py")
        generation = reg.snapshot.generation

        with pytest.raises(AliasConflict):
            reg.register(_descriptor("prefix", aliases=["p"]), "prefix.py")

        assert reg.snapshot.generation == generation


class TestUnregister:

    def test_removes_name_and_aliases(self):
        reg = CommandRegistry()
        reg.register(_descriptor("ping", aliases=["latency", "p"]), "ping.py")

        removed = reg.unregister("Ping")

        assert removed.name == "ping"
        assert reg.resolve("ping") is None
        assert reg.resolve("latency") is None
        assert dict(reg.snapshot.aliases) == {}
        assert reg.origin_of("ping") is None

    def test_absent_name_is_noop(self):
        reg = CommandRegistry()
        generation = reg.snapshot.generation
        assert reg.unregister("missing") is None
        assert reg.snapshot.generation == generation


class TestReplace:

    def test_swaps_descriptor_and_aliases(self):
        reg = CommandRegistry()
        reg.register(_descriptor("foo", aliases=["f"]), "foo.py")
        new = _descriptor("bar", aliases=["b"])

        reg.replace("foo", new, "foo.py")

        assert reg.resolve("foo") is None
        assert reg.resolve("f") is None
        assert reg.resolve("bar") is new
        assert reg.resolve("b") is new
        assert reg.origin_of("bar") == "foo.py"
        _assert_no_dangling(reg)

    def test_reload_may_reuse_its_own_aliases(self):
        reg = CommandRegistry()
        reg.register(_descriptor("foo", aliases=["f"]), "foo.py")
        new = _descriptor("foo", aliases=["f", "g"], description="v2")

        reg.replace("foo", new, "foo.py")

        assert reg.resolve("f") is new
        assert reg.resolve("g") is new

    def test_alias_conflict_keeps_old_descriptor(self):
        reg = CommandRegistry()
        old = _descriptor("foo", aliases=["f"])
        reg.register(old, "foo.py")
        reg.register(_descriptor("bar"), "bar.py")

        with pytest.raises(AliasConflict):
            reg.replace("foo", _descriptor("foo", aliases=["bar"]), "foo.py")

        assert reg.resolve("foo") is old
        assert reg.resolve("f") is old
        _assert_no_dangling(reg)

    def test_rename_onto_other_origin_name_keeps_old(self):
        reg = CommandRegistry()
        old = _descriptor("foo")
        reg.register(old, "foo.py")
        reg.register(_descriptor("bar"), "bar.py")

        with pytest.raises(NameConflict):
            reg.replace("foo", _descriptor("bar"), "foo.py")

        assert reg.resolve("foo") is old
        assert reg.origin_of("bar") == "bar.py"

    def test_replace_of_name_owned_elsewhere_raises(self):
        reg = CommandRegistry()
        reg.register(_descriptor("foo"), "foo.py")

        with pytest.raises(NameConflict):
            reg.replace("foo", _descriptor("foo", description="hijack"), "other.py")

        assert reg.origin_of("foo") == "foo.py"


class TestSnapshots:

    def test_no_dangling_alias_across_mixed_operations(self):
        reg = CommandRegistry()
        steps = [
            lambda: reg.register(_descriptor("a", aliases=["a1", "a2"]), "a.py"),
            lambda: reg.register(_descriptor("b", aliases=["b1"]), "b.py"),
            lambda: reg.replace("a", _descriptor("c", aliases=["a1", "c1"]), "a.py"),
            lambda: reg.unregister("b"),
            lambda: reg.register(_descriptor("b", aliases=["a2"]), "b.py"),
            lambda: reg.replace("c", _descriptor("c", aliases=[]), "a.py"),
            lambda: reg.unregister("c"),
        ]
        for step in steps:
            step()
            _assert_no_dangling(reg)

        assert reg.command_names == frozenset({"b"})
        assert reg.resolve("a2").name == "b"

    def test_resolve_is_idempotent(self):
        reg = CommandRegistry()
        reg.register(_descriptor("ping", aliases=["latency"]), "ping.py")

        assert reg.resolve("latency") == reg.resolve("latency")
        assert reg.resolve("ping") is reg.resolve("PING")

    def test_held_snapshot_is_unaffected_by_later_mutation(self):
        reg = CommandRegistry()
        ping = _descriptor("ping", aliases=["p"])
        reg.register(ping, "ping.py")
        snap = reg.snapshot

        reg.unregister("ping")

        assert snap.resolve("p") is ping
        assert reg.resolve("p") is None
        assert reg.snapshot.generation == snap.generation + 1

    def test_categories_are_sorted(self):
        reg = CommandRegistry()
        reg.register(_descriptor("zeta", category="Utility"), "z.py")
        reg.register(_descriptor("alpha", category="Utility"), "a.py")
        reg.register(_descriptor("ban", category="Admin"), "b.py")

        categories = reg.categories()

        assert list(categories) == ["Admin", "Utility"]
        assert [d.name for d in categories["Utility"]] == ["alpha", "zeta"]
        assert len(reg) == 3
