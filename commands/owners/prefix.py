"""Show or change the server's command prefix."""

from switchboard.config import MAX_PREFIX_LENGTH

name = "prefix"
aliases = ["setprefix"]
description = "Shows the current prefix, sets a new one, or resets it to the default."
usage = "prefix [new prefix | reset]"
cooldown = 10
guild_only = True
user_permissions = ["Administrator"]


async def run(client, message, args):
    guild_id = message.origin_id

    if not args:
        current = await client.store.get_prefix(guild_id)
        await client.reply(message.channel_id, f"The prefix here is `{current}`.")
        return

    if args[0].lower() == "reset":
        await client.store.reset_prefix(guild_id)
        await client.reply(
            message.channel_id,
            f"Prefix reset to `{client.store.default_prefix}`.",
        )
        return

    try:
        await client.store.set_prefix(guild_id, args[0])
    except ValueError:
        await client.reply(
            message.channel_id,
            f"A prefix must be 1 to {MAX_PREFIX_LENGTH} characters with no spaces.",
        )
        return
    await client.reply(message.channel_id, f"Prefix set to `{args[0]}`.")
