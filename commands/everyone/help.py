"""Command list and per-command details."""

from switchboard.descriptor import CommandFlag

name = "help"
aliases = ["commands", "h"]
description = "Lists every command, or shows details for one."
usage = "help [command]"
cooldown = 3


def _visible(client, descriptor, author_id):
    if descriptor.has_flag(CommandFlag.DEVELOPER_ONLY):
        return client.store.is_developer(author_id)
    if descriptor.has_flag(CommandFlag.OWNER_ONLY):
        return client.store.is_owner(author_id) or client.store.is_developer(author_id)
    return True


def _details(descriptor, prefix):
    lines = [f"**{descriptor.name}**"]
    if descriptor.description:
        lines.append(descriptor.description)
    if descriptor.aliases:
        lines.append("Aliases: " + ", ".join(f"`{a}`" for a in sorted(descriptor.aliases)))
    lines.append(f"Usage: `{prefix}{descriptor.usage or descriptor.name}`")
    lines.append(f"Category: {descriptor.category}")
    if descriptor.cooldown_seconds:
        lines.append(f"Cooldown: {descriptor.cooldown_seconds:g}s")
    if descriptor.required_user_permissions:
        lines.append("Requires: " + ", ".join(descriptor.required_user_permissions))
    return "\n".join(lines)


async def run(client, message, args):
    prefix = await client.store.get_prefix(message.origin_id if message.in_guild else None)

    if args:
        descriptor = client.registry.resolve(args[0])
        if descriptor is None or not _visible(client, descriptor, message.author_id):
            await client.reply(message.channel_id, f"No command named `{args[0]}`.")
            return
        await client.reply(message.channel_id, _details(descriptor, prefix))
        return

    lines = [
        f"**{client.bot_name}** has {client.get_loaded_command_count()} commands. "
        f"Use `{prefix}help <command>` for details."
    ]
    for category, commands in client.get_categories().items():
        names = [c.name for c in commands if _visible(client, c, message.author_id)]
        if names:
            lines.append(f"**{category}**: " + ", ".join(f"`{n}`" for n in names))
    await client.reply(message.channel_id, "\n".join(lines))
