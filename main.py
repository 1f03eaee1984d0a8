"""
Main command-line interface for pyavctl.

This script provides a CLI to interact with Pioneer AV receivers and PJLink
projectors.
"""

import argparse
import asyncio
import logging
import re
import sys

from pyavctl.config import AvrConfig, PJLinkConfig
from pyavctl.exceptions import AvControlError
from pyavctl.listener import LoggingListener
from pyavctl.models import MODELS, get_model
from pyavctl.pjlink import IdentificationProperty, PJLinkDevice
from pyavctl.receiver import AvrReceiver, Channel, Intent, Percent, Decibel, UNDEF

PERCENT_VALUE = re.compile(r"(\d+(?:\.\d+)?)%")
DB_VALUE = re.compile(r"(-?\d+(?:\.\d+)?)\s*dB", re.IGNORECASE)


def build_receiver(args) -> AvrReceiver:
    config = AvrConfig.from_dict({
        "ipAddress": args.host,
        "tcpPort": args.port,
        "serialPort": args.serial,
        "useSerial": args.serial is not None,
    })
    return AvrReceiver.from_config(config, get_model(args.model), LoggingListener())


async def show_status(args):
    """Query and display the status of all zones."""
    receiver = build_receiver(args)
    print(f"Connecting to AVR at {receiver.connection_name}...")
    await receiver.async_connect()

    # Give the zone re-sync triggered by the connection time to complete
    await asyncio.sleep(2)
    if not receiver.is_online:
        print("AVR is offline")
        receiver.close()
        return

    print("\nZone Status:")
    print("-" * 80)
    for zone_id, zone in receiver.zones_by_id.items():
        if not zone.power:
            print(f"Zone {zone_id}: {'OFF' if zone.power is False else 'unknown'}")
            continue
        volume_db = "unknown" if zone.volume_db in (None, UNDEF) else f"{zone.volume_db:.1f}dB"
        mute = "MUTED" if zone.mute is True else ""
        print(
            f"Zone {zone_id}: ON  | Vol: {volume_db:10s} ({zone.volume_percent}%) {mute:5s} "
            f"| Input: {zone.input_source}"
        )
    print("-" * 80)
    print(f"Display: {receiver.display_information!r}")
    receiver.close()


async def run_intent(args, channel: Channel, zone: int, intent):
    receiver = build_receiver(args)
    print(f"Connecting to AVR at {receiver.connection_name}...")
    await receiver.async_connect()
    await receiver.handle_command(channel, zone, intent)
    # Leave time for notifications to come back
    await asyncio.sleep(1)
    receiver.close()
    print("Done")


def parse_volume(value: str):
    if value.lower() == "up":
        return Intent.INCREASE
    if value.lower() == "down":
        return Intent.DECREASE
    matched = PERCENT_VALUE.fullmatch(value)
    if matched:
        return Percent(float(matched.group(1)))
    matched = DB_VALUE.fullmatch(value)
    if matched:
        return Decibel(float(matched.group(1)))
    raise argparse.ArgumentTypeError(f"Invalid volume '{value}'. Use 50%, -40dB, up or down")


async def pjlink(args):
    device = PJLinkDevice(PJLinkConfig(args.host, args.port or 4352, args.password))
    try:
        if args.action == "on":
            await device.power_on()
        elif args.action == "off":
            await device.power_off()
        else:
            print(f"Power: {(await device.get_power_state()).name}")
            video, audio = await device.get_mute_state()
            print(f"Video mute: {video}, audio mute: {audio}")
            print(f"Input: {await device.get_input()}")
            identifications = await device.get_identifications()
            for identification in IdentificationProperty:
                if identification in identifications:
                    print(f"{identification.name}: {identifications[identification]}")
    finally:
        device.close()


def separate_negative_levels(argv):
    """Put "--" before a negative dB level so argparse does not read it as an option."""
    result = []
    for arg in argv:
        if arg.startswith("-") and DB_VALUE.fullmatch(arg) and "--" not in result:
            result.append("--")
        result.append(arg)
    return result


def build_parser():
    parser = argparse.ArgumentParser(description="Control Pioneer AV receivers and PJLink projectors")
    parser.add_argument("--host", default="192.168.1.20", help="Device hostname or IP (default: 192.168.1.20)")
    parser.add_argument("--port", type=int, default=None, help="TCP port (default: 23, 4352 for pjlink)")
    parser.add_argument("--serial", default=None, help="Serial port of the AVR, e.g. /dev/ttyUSB0")
    parser.add_argument("--model", default="VSX-1120", choices=sorted(MODELS), help="AVR model")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("status", help="Show status of all zones")

    power_parser = subparsers.add_parser("power", help="Switch a zone on or off")
    power_parser.add_argument("state", choices=["on", "off"])
    power_parser.add_argument("--zone", type=int, default=1, help="Zone (default: 1)")

    volume_parser = subparsers.add_parser("volume", help="Set volume level for a zone")
    volume_parser.add_argument("zone", type=int, help="Zone")
    volume_parser.add_argument("level", type=parse_volume, help="50%%, -40dB, up or down")

    mute_parser = subparsers.add_parser("mute", help="Mute or unmute a zone")
    mute_parser.add_argument("zone", type=int, help="Zone")
    mute_parser.add_argument("state", choices=["on", "off"])

    input_parser = subparsers.add_parser("input", help="Select the input of a zone")
    input_parser.add_argument("zone", type=int, help="Zone")
    input_parser.add_argument("source", help="Source name (e.g. 'HDMI 1') or two-digit code")

    pjlink_parser = subparsers.add_parser("pjlink", help="Control a PJLink projector")
    pjlink_parser.add_argument("action", choices=["status", "on", "off"])
    pjlink_parser.add_argument("--password", default=None, help="PJLink admin password")

    return parser


def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(separate_negative_levels(argv))
    if args.command != "pjlink" and args.port is None:
        args.port = 23

    logging.basicConfig(level=logging.DEBUG if args.debug else logging.INFO)

    try:
        if args.command == "status":
            asyncio.run(show_status(args))
        elif args.command == "power":
            intent = Intent.ON if args.state == "on" else Intent.OFF
            asyncio.run(run_intent(args, Channel.POWER, args.zone, intent))
        elif args.command == "volume":
            asyncio.run(run_intent(args, Channel.VOLUME_DIMMER, args.zone, args.level))
        elif args.command == "mute":
            intent = Intent.ON if args.state == "on" else Intent.OFF
            asyncio.run(run_intent(args, Channel.MUTE, args.zone, intent))
        elif args.command == "input":
            asyncio.run(run_intent(args, Channel.SET_INPUT_SOURCE, args.zone, args.source))
        elif args.command == "pjlink":
            asyncio.run(pjlink(args))
        else:
            parser.print_help()
    except AvControlError as e:
        print(f"Error: {e}")


if __name__ == "__main__":
    main()
