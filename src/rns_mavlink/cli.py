# MIT License
#
# Copyright (c) 2025 RNS MAVLink Bridge Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Command line entry points.

    rns-mavlink-fc -c fc.conf          aircraft end (serial port)
    rns-mavlink-gc -c gc.conf          ground end (UDP)
    rns-mavlink-tty-test -p /dev/ttyACM0
"""

import argparse
import asyncio
import signal
import sys

import RNS

from rns_mavlink import __version__
from rns_mavlink.bridge import FlightControllerBridge, GroundControlBridge
from rns_mavlink.config import FlightControllerConfig, GroundControlConfig, load_config
from rns_mavlink.errors import BridgeError, EndpointClosedError, EndpointIoError
from rns_mavlink.reticulum_transport import ReticulumTransport
from rns_mavlink.serial_endpoint import SerialEndpoint
from rns_mavlink.udp_endpoint import UdpEndpoint


FC_CONFIG_PATH = "fc.conf"
GC_CONFIG_PATH = "gc.conf"


def _parser(description, config_path):
    parser = argparse.ArgumentParser(description=description)
    parser.add_argument("-c", "--config", default=config_path,
                        help=f"bridge config file (default: {config_path})")
    parser.add_argument("--rnsconfig", default=None,
                        help="path to alternative Reticulum config directory")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def run_bridge(bridge, transport):
    """
    Run a bridge to completion on a fresh event loop.

    Returns:
        int: Process exit status, 0 on clean shutdown, 1 on failure
    """
    async def run():
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(signum, bridge.stop)
            except NotImplementedError:
                # No signal handlers on Windows event loops; Ctrl-C raises KeyboardInterrupt
                pass

        transport.start()
        try:
            await bridge.run()
        finally:
            transport.stop()

    try:
        asyncio.run(run())
    except BridgeError as e:
        RNS.log(f"{bridge} exited with error: {type(e).__name__}: {e}", RNS.LOG_ERROR)
        return 1
    except KeyboardInterrupt:
        RNS.log(f"{bridge} interrupted", RNS.LOG_INFO)

    RNS.log(f"{bridge} exit", RNS.LOG_INFO)
    return 0


def fc_main(argv=None):
    args = _parser("RNS-MAVLink flight controller bridge", FC_CONFIG_PATH).parse_args(argv)

    try:
        config = load_config(args.config, FlightControllerConfig)
    except BridgeError as e:
        RNS.log(f"error creating fc bridge: {e}", RNS.LOG_ERROR)
        return 1

    RNS.loglevel = config.log_level
    RNS.log(f"fc start with config {args.config}", RNS.LOG_INFO)

    transport = ReticulumTransport(
        "fc",
        configdir=args.rnsconfig,
        identity_path=config.identity_path,
        loglevel=config.log_level,
    )
    endpoint = SerialEndpoint(config.serial_port, config.serial_baud)
    bridge = FlightControllerBridge(transport, endpoint, config.gc_destination)
    return run_bridge(bridge, transport)


def gc_main(argv=None):
    args = _parser("RNS-MAVLink ground control bridge", GC_CONFIG_PATH).parse_args(argv)

    try:
        config = load_config(args.config, GroundControlConfig)
    except BridgeError as e:
        RNS.log(f"error creating gc bridge: {e}", RNS.LOG_ERROR)
        return 1

    RNS.loglevel = config.log_level
    RNS.log(f"gc start with config {args.config}", RNS.LOG_INFO)

    transport = ReticulumTransport(
        "gc",
        configdir=args.rnsconfig,
        identity_path=config.identity_path,
        loglevel=config.log_level,
    )
    endpoint = UdpEndpoint(("0.0.0.0", config.qgc_reply_port), target=config.qgc_udp_address)
    bridge = GroundControlBridge(
        transport,
        endpoint,
        fc_destination=config.fc_destination,
        announce_interval=config.announce_interval,
    )
    return run_bridge(bridge, transport)


def tty_test_main(argv=None):
    """Print the size of every read from a serial port; a wiring check for the aircraft end."""
    parser = argparse.ArgumentParser(description="Serial port read test")
    parser.add_argument("-p", "--port", default="/dev/ttyACM0", help="serial device")
    parser.add_argument("-b", "--baud", type=int, default=SerialEndpoint.DEFAULT_BAUDRATE, help="baud rate")
    args = parser.parse_args(argv)

    endpoint = SerialEndpoint(args.port, args.baud, read_timeout=0.1)

    async def run():
        await endpoint.open()
        try:
            while True:
                try:
                    data = await endpoint.read(2 ** 16)
                except EndpointClosedError:
                    raise
                except EndpointIoError as e:
                    print(f"read error: {e}")
                    await asyncio.sleep(0.1)
                    continue
                if data:
                    print(f"got {len(data)} bytes")
                else:
                    print("timeout")
        finally:
            endpoint.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        return 0
    except BridgeError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(fc_main())
