"""Tests for the message-received pipeline."""

from unittest.mock import AsyncMock

import pytest

from switchboard.cooldowns import CooldownTracker
from switchboard.descriptor import CommandDescriptor, flags_from_source
from switchboard.dispatcher import CommandDispatcher, DispatchOutcome, split_command
from switchboard.gateway import InboundMessage, OriginKind
from switchboard.invoker import Invoker
from switchboard.policy import PolicyEngine
from switchboard.registry import CommandRegistry
from switchboard.stats import BotStats

BOT_ID = "999"
DEV = "100"


class FakeStore:
    def __init__(self, prefixes=None, disabled=()):
        self.prefixes = prefixes or {}
        self.disabled = frozenset(disabled)
        self.default_prefix = "+"

    async def get_prefix(self, origin_id):
        if origin_id is None:
            return self.default_prefix
        return self.prefixes.get(origin_id, self.default_prefix)

    def is_developer(self, user_id):
        return user_id == DEV

    def is_owner(self, user_id):
        return False

    def get_disabled_commands(self):
        return self.disabled

    async def increment_command_usage(self, name):
        return None


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _message(content, author="u1", guild=True, author_perms=(), bot_perms=("SendMessages",),
             **kwargs):
    return InboundMessage(
        message_id="m1",
        author_id=author,
        content=content,
        origin_kind=OriginKind.GUILD if guild else OriginKind.DIRECT,
        origin_id="g1" if guild else "dm1",
        channel_id="c1",
        author_permissions=frozenset(author_perms) if guild else None,
        bot_permissions=frozenset(bot_perms) if guild else None,
        **kwargs,
    )


def _build(store=None):
    registry = CommandRegistry()
    store = store or FakeStore()
    clock = FakeClock()
    reply = AsyncMock()
    stats = BotStats()
    policy = PolicyEngine(store, CooldownTracker(clock=clock))
    invoker = Invoker(object(), reply, stats, store=store, error_message="sorry")
    dispatcher = CommandDispatcher(
        registry, store, policy, invoker, reply, stats, bot_user_id=BOT_ID
    )
    return dispatcher, registry, reply, stats, clock


def _register(registry, name, handler=None, aliases=(), **fields):
    flag_names = ("developer_only", "owner_only", "guild_only", "dm_only", "disabled")
    flags = flags_from_source(**{k: fields.pop(k) for k in list(fields) if k in flag_names})
    descriptor = CommandDescriptor(
        name=name,
        aliases=list(aliases),
        flags=flags,
        handler=handler or AsyncMock(),
        **fields,
    )
    registry.register(descriptor, f"{name}.py")
    return descriptor


class TestSplitCommand:

    def test_splits_on_whitespace(self):
        assert split_command("+Ping  a   b", 1) == ("ping", ("a", "b"))

    def test_empty(self):
        assert split_command("+   ", 1) == ("", ())


class TestMatching:

    @pytest.mark.asyncio
    async def test_bot_and_webhook_authors_are_ignored(self):
        dispatcher, registry, _, stats, _ = _build()
        handler = AsyncMock()
        _register(registry, "ping", handler)

        assert await dispatcher.dispatch(_message("+ping", author_is_bot=True)) == (
            DispatchOutcome.IGNORED
        )
        assert await dispatcher.dispatch(_message("+ping", is_webhook=True)) == (
            DispatchOutcome.IGNORED
        )
        handler.assert_not_awaited()
        assert stats.messages_received == 0

    @pytest.mark.asyncio
    async def test_non_command_text_is_silent(self):
        dispatcher, registry, reply, stats, _ = _build()
        _register(registry, "ping")

        outcome = await dispatcher.dispatch(_message("hello there"))

        assert outcome == DispatchOutcome.NOT_A_COMMAND
        reply.assert_not_awaited()
        assert stats.messages_received == 1

    @pytest.mark.asyncio
    async def test_unknown_command_is_silent(self):
        dispatcher, _, reply, _, _ = _build()
        assert await dispatcher.dispatch(_message("+nope")) == DispatchOutcome.UNKNOWN_COMMAND
        reply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_guild_prefix_is_used(self):
        dispatcher, registry, _, _, _ = _build(FakeStore(prefixes={"g1": "!"}))
        handler = AsyncMock()
        _register(registry, "ping", handler)

        assert await dispatcher.dispatch(_message("+ping")) == DispatchOutcome.NOT_A_COMMAND
        assert await dispatcher.dispatch(_message("!ping")) == DispatchOutcome.INVOKED
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_direct_messages_use_default_prefix(self):
        dispatcher, registry, _, _, _ = _build(FakeStore(prefixes={"dm1": "!"}))
        _register(registry, "ping")
        assert await dispatcher.dispatch(_message("+ping", guild=False)) == DispatchOutcome.INVOKED

    @pytest.mark.asyncio
    async def test_mention_acts_as_prefix(self):
        dispatcher, registry, _, _, _ = _build()
        handler = AsyncMock()
        _register(registry, "ping", handler, aliases=["latency"])

        for content in (f"<@{BOT_ID}> ping", f"<@!{BOT_ID}>LATENCY x"):
            assert await dispatcher.dispatch(_message(content)) == DispatchOutcome.INVOKED

        assert handler.await_args_list[1].args[2] == ["x"]

    @pytest.mark.asyncio
    async def test_mention_only_gets_quick_help(self):
        dispatcher, _, reply, _, _ = _build(FakeStore(prefixes={"g1": "?"}))

        outcome = await dispatcher.dispatch(_message(f"<@{BOT_ID}>"))

        assert outcome == DispatchOutcome.QUICK_HELP
        text = reply.await_args.args[1]
        assert "`?`" in text
        assert "`?help`" in text

    @pytest.mark.asyncio
    async def test_prefix_only_is_not_a_command(self):
        dispatcher, _, reply, _, _ = _build()
        assert await dispatcher.dispatch(_message("+")) == DispatchOutcome.NOT_A_COMMAND
        reply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mention_of_someone_else_is_ignored(self):
        dispatcher, registry, _, _, _ = _build()
        _register(registry, "ping")
        assert await dispatcher.dispatch(_message("<@123> ping")) == DispatchOutcome.NOT_A_COMMAND


class TestPolicyAndInvoke:

    @pytest.mark.asyncio
    async def test_denial_is_replied_and_handler_not_called(self):
        dispatcher, registry, reply, _, _ = _build()
        handler = AsyncMock()
        _register(registry, "secret", handler, developer_only=True)

        outcome = await dispatcher.dispatch(_message("+secret"))

        assert outcome == DispatchOutcome.DENIED
        handler.assert_not_awaited()
        reply.assert_awaited_once_with("c1", "This command is reserved for the bot developers.")

    @pytest.mark.asyncio
    async def test_developer_bypasses_administrator_requirement(self):
        dispatcher, registry, _, _, _ = _build()
        handler = AsyncMock()
        _register(registry, "prefix", handler, required_user_permissions=["Administrator"])

        outcome = await dispatcher.dispatch(_message("+prefix !", author=DEV, author_perms=()))

        assert outcome == DispatchOutcome.INVOKED
        handler.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cooldown_between_messages(self):
        dispatcher, registry, reply, _, clock = _build()
        _register(registry, "ping", cooldown_seconds=5)

        assert await dispatcher.dispatch(_message("+ping")) == DispatchOutcome.INVOKED
        clock.now = 3.0
        assert await dispatcher.dispatch(_message("+ping")) == DispatchOutcome.DENIED
        assert "`2.0`" in reply.await_args.args[1]
        clock.now = 6.0
        assert await dispatcher.dispatch(_message("+ping")) == DispatchOutcome.INVOKED

    @pytest.mark.asyncio
    async def test_failing_handler_stays_registered(self):
        dispatcher, registry, reply, _, _ = _build()
        handler = AsyncMock(side_effect=RuntimeError("boom"))
        descriptor = _register(registry, "flaky", handler, dm_only=True)

        assert await dispatcher.dispatch(_message("+flaky", guild=False)) == DispatchOutcome.FAILED
        reply.assert_awaited_with("c1", "sorry")
        assert registry.resolve("flaky") is descriptor

        # The next attempt still runs the full chain: dm_only denies in a guild
        assert await dispatcher.dispatch(_message("+flaky")) == DispatchOutcome.DENIED
        handler.side_effect = None
        assert await dispatcher.dispatch(_message("+flaky", guild=False)) == DispatchOutcome.INVOKED

    @pytest.mark.asyncio
    async def test_unexpected_errors_never_escape(self):
        store = FakeStore()
        store.get_prefix = AsyncMock(side_effect=RuntimeError("store exploded"))
        dispatcher, _, _, _, _ = _build(store)

        assert await dispatcher.dispatch(_message("+ping")) == DispatchOutcome.FAILED

    @pytest.mark.asyncio
    async def test_reply_failure_on_denial_is_contained(self):
        dispatcher, registry, reply, _, _ = _build()
        reply.side_effect = ConnectionError("down")
        _register(registry, "off", disabled=True)

        assert await dispatcher.dispatch(_message("+off")) == DispatchOutcome.DENIED
