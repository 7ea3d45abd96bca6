"""Round-trip latency and uptime."""

import time

name = "ping"
aliases = ["latency"]
description = "Checks the bot's response time and uptime."
usage = "ping"
cooldown = 5


async def run(client, message, args):
    started = time.monotonic()
    await client.reply(message.channel_id, "Pinging...")
    round_trip_ms = (time.monotonic() - started) * 1000
    await client.reply(
        message.channel_id,
        f"Pong! Round trip: `{round_trip_ms:.0f}ms` | Uptime: `{client.stats.uptime()}`",
    )
