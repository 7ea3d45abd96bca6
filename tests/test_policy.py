"""Tests for the admission policy chain."""

import pytest

from switchboard.cooldowns import CooldownTracker
from switchboard.descriptor import CommandDescriptor, flags_from_source
from switchboard.gateway import InboundMessage, OriginKind
from switchboard.policy import (
    DenialReason,
    DispatchContext,
    PolicyEngine,
    missing_permissions,
)

DEV = "100"
OWNER = "200"
USER = "300"


class FakePolicyConfig:
    def __init__(self, developers=(DEV,), owners=(OWNER,), disabled=()):
        self.developers = set(developers)
        self.owners = set(owners)
        self.disabled = frozenset(disabled)

    def is_developer(self, user_id):
        return user_id in self.developers

    def is_owner(self, user_id):
        return user_id in self.owners

    def get_disabled_commands(self):
        return self.disabled


async def _noop(client, message, args):
    return None


def _command(name="cmd", cooldown=0, user_perms=(), bot_perms=(), **flags):
    return CommandDescriptor(
        name=name,
        cooldown_seconds=cooldown,
        flags=flags_from_source(**flags),
        required_user_permissions=list(user_perms),
        required_bot_permissions=list(bot_perms),
        handler=_noop,
    )


def _ctx(author=USER, guild=True, author_perms=(), bot_perms=("SendMessages",), name="cmd"):
    message = InboundMessage(
        message_id="m1",
        author_id=author,
        content=f"+{name}",
        origin_kind=OriginKind.GUILD if guild else OriginKind.DIRECT,
        origin_id="g1" if guild else "dm1",
        channel_id="c1",
        author_permissions=frozenset(author_perms) if guild else None,
        bot_permissions=frozenset(bot_perms) if guild else None,
    )
    return DispatchContext(message=message, command_name=name, used_prefix="+")


def _engine(**config):
    return PolicyEngine(FakePolicyConfig(**config), CooldownTracker())


class TestPrecedence:

    def test_allows_plain_command(self):
        decision = _engine().evaluate(_command(), _ctx())
        assert decision.allowed
        assert decision.message == ""

    def test_disabled_checked_before_developer_only(self):
        command = _command(disabled=True, developer_only=True)
        decision = _engine().evaluate(command, _ctx(author=DEV))
        assert decision.reason == DenialReason.COMMAND_DISABLED

    def test_store_disabled_set_counts_as_disabled(self):
        engine = _engine(disabled={"cmd"})
        decision = engine.evaluate(_command(), _ctx(author=DEV))
        assert decision.reason == DenialReason.COMMAND_DISABLED
        assert decision.message == "This command is currently disabled."

    def test_developer_only_denies_others(self):
        decision = _engine().evaluate(_command(developer_only=True), _ctx(author=OWNER))
        assert decision.reason == DenialReason.DEVELOPER_ONLY

    def test_developer_only_before_owner_only(self):
        command = _command(developer_only=True, owner_only=True)
        decision = _engine().evaluate(command, _ctx(author=USER))
        assert decision.reason == DenialReason.DEVELOPER_ONLY

    def test_owner_only(self):
        engine = _engine()
        assert engine.evaluate(_command(owner_only=True), _ctx(author=USER)).reason == (
            DenialReason.OWNER_ONLY
        )
        assert engine.evaluate(_command(owner_only=True), _ctx(author=OWNER)).allowed

    def test_owner_only_before_origin(self):
        decision = _engine().evaluate(
            _command(owner_only=True, guild_only=True), _ctx(author=USER, guild=False)
        )
        assert decision.reason == DenialReason.OWNER_ONLY

    def test_guild_only_outside_guild(self):
        decision = _engine().evaluate(_command(guild_only=True), _ctx(guild=False))
        assert decision.reason == DenialReason.GUILD_ONLY_COMMAND

    def test_dm_only_inside_guild(self):
        engine = _engine()
        assert engine.evaluate(_command(dm_only=True), _ctx(guild=True)).reason == (
            DenialReason.DM_ONLY_COMMAND
        )
        assert engine.evaluate(_command(dm_only=True), _ctx(guild=False)).allowed

    def test_origin_before_permissions(self):
        command = _command(dm_only=True, user_perms=["Administrator"])
        decision = _engine().evaluate(command, _ctx(guild=True))
        assert decision.reason == DenialReason.DM_ONLY_COMMAND


class TestPermissions:

    def test_missing_user_permissions_are_named(self):
        command = _command(user_perms=["ManageMessages", "KickMembers"])
        decision = _engine().evaluate(command, _ctx(author_perms=["KickMembers"]))

        assert decision.reason == DenialReason.MISSING_USER_PERMISSIONS
        assert decision.missing == ("ManageMessages",)
        assert "`ManageMessages`" in decision.message

    def test_developer_bypasses_user_permissions(self):
        command = _command(user_perms=["Administrator"])
        decision = _engine().evaluate(command, _ctx(author=DEV, author_perms=()))
        assert decision.allowed

    def test_owner_bypasses_user_permissions(self):
        command = _command(user_perms=["Administrator"])
        decision = _engine().evaluate(command, _ctx(author=OWNER, author_perms=()))
        assert decision.allowed

    def test_administrator_implies_everything(self):
        command = _command(user_perms=["BanMembers", "ManageGuild"])
        decision = _engine().evaluate(command, _ctx(author_perms=["Administrator"]))
        assert decision.allowed

    def test_user_permissions_before_bot_permissions(self):
        command = _command(user_perms=["BanMembers"], bot_perms=["BanMembers"])
        decision = _engine().evaluate(command, _ctx(author_perms=(), bot_perms=()))
        assert decision.reason == DenialReason.MISSING_USER_PERMISSIONS

    def test_bot_permissions_apply_to_developers_too(self):
        command = _command(bot_perms=["EmbedLinks"])
        decision = _engine().evaluate(command, _ctx(author=DEV, bot_perms=["SendMessages"]))

        assert decision.reason == DenialReason.MISSING_BOT_PERMISSIONS
        assert decision.missing == ("EmbedLinks",)
        assert decision.message.startswith("I need")

    def test_permissions_not_checked_in_direct_messages(self):
        command = _command(user_perms=["Administrator"], bot_perms=["EmbedLinks"])
        decision = _engine().evaluate(command, _ctx(guild=False))
        assert decision.allowed

    def test_missing_permissions_is_case_insensitive(self):
        assert missing_permissions(["SendMessages"], ["sendmessages"]) == ()
        assert missing_permissions(["A", "B"], None) == ("A", "B")


class TestCooldownStep:

    def test_cooldown_is_last_and_reports_remaining(self):
        engine = _engine()
        command = _command(name="ping", cooldown=5)
        ctx = _ctx(name="ping")

        assert engine.evaluate(command, ctx, now=0).allowed
        denied = engine.evaluate(command, ctx, now=3)
        assert denied.reason == DenialReason.ON_COOLDOWN
        assert denied.remaining == pytest.approx(2.0)
        assert denied.message == "Please wait `2.0` more second(s) before reusing `ping`."
        assert engine.evaluate(command, ctx, now=6).allowed

    def test_denied_earlier_does_not_start_cooldown(self):
        engine = _engine()
        command = _command(cooldown=5, user_perms=["BanMembers"])

        assert not engine.evaluate(command, _ctx(author_perms=()), now=0).allowed
        assert len(engine.cooldowns) == 0
        assert engine.evaluate(command, _ctx(author_perms=["BanMembers"]), now=1).allowed

    def test_developers_are_still_throttled(self):
        engine = _engine()
        command = _command(cooldown=5)
        assert engine.evaluate(command, _ctx(author=DEV), now=0).allowed
        assert engine.evaluate(command, _ctx(author=DEV), now=1).reason == (
            DenialReason.ON_COOLDOWN
        )
