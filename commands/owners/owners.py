"""Manage the bot owner list."""

import re

name = "owners"
aliases = ["owner"]
description = "Lists, adds or removes bot owners."
usage = "owners [list | add <user> | del <user>]"
cooldown = 5
developer_only = True

_MENTION = re.compile(r"^<@!?(\d+)>$")


def _user_id(token):
    match = _MENTION.match(token)
    return match.group(1) if match else token


async def run(client, message, args):
    action = args[0].lower() if args else "list"

    if action == "list":
        owners = client.store.list_owners()
        if not owners:
            await client.reply(message.channel_id, "No owners are registered.")
            return
        await client.reply(
            message.channel_id,
            "Owners: " + ", ".join(f"<@{o}>" for o in owners),
        )
        return

    if action not in ("add", "del", "remove") or len(args) < 2:
        await client.reply(message.channel_id, f"Usage: `{usage}`")
        return

    user_id = _user_id(args[1])
    if action == "add":
        added = await client.store.add_owner(user_id)
        text = f"<@{user_id}> is now an owner." if added else f"<@{user_id}> is already an owner."
    else:
        removed = await client.store.remove_owner(user_id)
        text = f"<@{user_id}> is no longer an owner." if removed else f"<@{user_id}> is not an owner."
    await client.reply(message.channel_id, text)
