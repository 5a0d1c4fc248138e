#!/usr/bin/env python3
"""
Command-line tools for talking to the mixing console.

Usage:
    python -m maestro send /ch/01/mix/fader 0.75 --host 192.168.1.50
    python -m maestro send /ch/01/config/name
    python -m maestro monitor --host 192.168.1.50
    python -m maestro emulator --port 10023

Arguments to `send` are parsed as int, then float, else kept as string.
Settings come from --config (YAML, see maestro.config), then the command
line options override them.
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from maestro import config as maestro_config
from maestro.errors import OSCError
from maestro.log import get_logger, set_level
from maestro.mixer import MixerConnection
from maestro.osc import OSCSession

logger = get_logger("maestro.cli")


def parse_argument(arg: str):
    """Parse a command-line argument to the appropriate type.

    Attempts to convert string arguments to int or float, preserving
    strings if conversion fails.
    """
    try:
        return int(arg)
    except ValueError:
        pass
    try:
        return float(arg)
    except ValueError:
        pass
    return arg


def resolve_settings(args: argparse.Namespace) -> dict:
    """Load config and apply command-line overrides."""
    settings = maestro_config.load_config(args.config)
    if args.host:
        settings["mixer"]["host"] = args.host
    if args.port:
        settings["mixer"]["port"] = args.port
    if getattr(args, "local_port", None) is not None:
        settings["osc"]["local_port"] = args.local_port
    if args.log_level:
        settings["logging"]["level"] = args.log_level
    maestro_config.validate_config(settings)
    return settings


async def send_osc_message(host: str, port: int, address: str, args: list,
                           wait: float = 0.0) -> list:
    """Send one message from a fresh session and collect replies.

    Args:
        wait: Seconds to keep listening for replies after sending

    Returns:
        Replies received while waiting, as flat [address, *args] lists

    Raises:
        TransportError: If the send failed
    """
    replies = []
    async with OSCSession(host, port) as session:
        session.on("message", lambda message, sender: replies.append(message))

        done = asyncio.get_running_loop().create_future()
        session.send(address, *args, callback=done.set_result)
        error = await done
        if error is not None:
            raise error

        print(f"Sent to {host}:{port} → {address} {args}")
        if wait > 0:
            await asyncio.sleep(wait)
    return replies


async def monitor(settings: dict, renew: float, duration: Optional[float] = None) -> MixerConnection:
    """Subscribe to the console and log everything it sends."""
    mixer = MixerConnection(
        port=settings["mixer"]["port"],
        local_host=settings["osc"]["local_host"],
        local_port=settings["osc"]["local_port"],
    )
    mixer.on("message", lambda message, sender: logger.info(f"{sender[0]}:{sender[1]} {message}"))
    mixer.on("bundle", lambda bundle, sender: logger.info(f"{sender[0]}:{sender[1]} bundle {bundle}"))
    mixer.on("error", lambda exc, sender: logger.error(f"{sender[0]}:{sender[1]} {exc}"))

    await mixer.connect(settings["mixer"]["host"])
    loop = asyncio.get_running_loop()
    deadline = None if duration is None else loop.time() + duration
    try:
        while deadline is None or loop.time() < deadline:
            mixer.subscribe()
            remaining = renew if deadline is None else deadline - loop.time()
            await asyncio.sleep(max(0.0, min(renew, remaining)))
    finally:
        session = mixer.session
        if session is not None:
            print(session.stats.format_stats("OSC SESSION"))
        await mixer.close()
    return mixer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="maestro",
        description="Send and monitor OSC traffic with a digital mixing console"
    )
    parser.add_argument('--config', type=str, default=None,
                        help='YAML configuration file')
    parser.add_argument('--host', type=str, default=None,
                        help='Console IP address (overrides config)')
    parser.add_argument('--port', type=int, default=None,
                        help='Console OSC port (default: 10023)')
    parser.add_argument('--log-level', type=str, default=None,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Log level (default: INFO)')

    commands = parser.add_subparsers(dest="command", required=True)

    send = commands.add_parser('send', help='Send one OSC message')
    send.add_argument('address', help='OSC address, e.g. /ch/01/mix/fader')
    send.add_argument('args', nargs='*', help='Message arguments')
    send.add_argument('--wait', type=float, default=0.5,
                      help='Seconds to wait for replies (default: 0.5)')

    mon = commands.add_parser('monitor', help='Subscribe with /xremote and log traffic')
    mon.add_argument('--renew', type=float, default=9.0,
                     help='Seconds between /xremote renewals (default: 9)')
    mon.add_argument('--local-port', type=int, default=None,
                     help='Local port to bind (default: OS-assigned)')

    emu = commands.add_parser('emulator', help='Run the mock X32 console')
    emu.add_argument('--interval', type=float, default=0.2,
                     help='Seconds between fader pushes (default: 0.2)')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = resolve_settings(args)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"{e}")
        return 1

    set_level(settings["logging"]["level"])

    try:
        if args.command == 'send':
            replies = asyncio.run(send_osc_message(
                settings["mixer"]["host"],
                settings["mixer"]["port"],
                args.address,
                [parse_argument(arg) for arg in args.args],
                wait=args.wait,
            ))
            for reply in replies:
                print(f"  ← {reply}")
        elif args.command == 'monitor':
            asyncio.run(monitor(settings, args.renew))
        elif args.command == 'emulator':
            from maestro.simulator.x32_emulator import serve
            asyncio.run(serve(settings["osc"]["local_host"],
                              args.port or settings["mixer"]["port"],
                              args.interval))
    except KeyboardInterrupt:
        pass
    except OSCError as e:
        logger.error(f"{e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
