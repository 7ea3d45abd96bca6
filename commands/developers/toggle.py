"""Disable or re-enable a command for everyone."""

name = "toggle"
description = "Disables a command globally, or re-enables it."
usage = "toggle <command>"
developer_only = True


async def run(client, message, args):
    if not args:
        await client.reply(message.channel_id, f"Usage: `{usage}`")
        return

    descriptor = client.registry.resolve(args[0])
    if descriptor is None:
        await client.reply(message.channel_id, f"No command named `{args[0]}`.")
        return
    if descriptor.name == name:
        await client.reply(message.channel_id, "This command cannot be disabled.")
        return

    disable = descriptor.name not in client.store.get_disabled_commands()
    await client.store.set_command_disabled(descriptor.name, disable)
    state = "disabled" if disable else "enabled"
    await client.reply(message.channel_id, f"`{descriptor.name}` is now {state}.")
