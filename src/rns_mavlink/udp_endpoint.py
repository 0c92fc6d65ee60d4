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
UDP socket endpoint for the ground control side.

The socket is bound to the reply port the ground station sends to. Outgoing
datagrams go to a fixed ground station address, or back to whoever sent the
last datagram when no address is configured.
"""

import asyncio

import RNS

from rns_mavlink.errors import EndpointClosedError, EndpointIoError, EndpointOpenError
from rns_mavlink.local_endpoint import LocalEndpoint


def parse_socket_address(value):
    """Split "host:port" into a (host, port) tuple."""
    host, separator, port = value.strip().rpartition(":")
    if not separator or not host:
        raise ValueError(f"expected host:port, got {value!r}")
    return host.strip("[]"), int(port)


class _DatagramProtocol(asyncio.DatagramProtocol):

    def __init__(self, endpoint):
        self.endpoint = endpoint

    def datagram_received(self, data, addr):
        self.endpoint._enqueue((data, addr))

    def error_received(self, exc):
        self.endpoint._enqueue(exc)

    def connection_lost(self, exc):
        self.endpoint._enqueue(EndpointClosedError(f"socket closed: {exc}" if exc else "socket closed"))


class UdpEndpoint(LocalEndpoint):
    """
    Args:
        bind_address: (host, port) to listen on
        target: (host, port) to send to, or None to reply to the last sender
        queue_size: Received datagrams buffered before new ones are dropped
    """

    QUEUE_SIZE = 1024

    def __init__(self, bind_address, target=None, queue_size=QUEUE_SIZE):
        self.bind_address = bind_address
        self.target = target
        self.last_sender = None
        self.transport = None
        self.received = asyncio.Queue(maxsize=queue_size)
        self.dropped = 0
        self.overflow = 0  # drops in the current run of a full queue

    async def open(self):
        loop = asyncio.get_running_loop()
        try:
            self.transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramProtocol(self),
                local_addr=self.bind_address,
            )
        except OSError as e:
            raise EndpointOpenError(f"cannot bind UDP socket to {self.bind_address}: {e}") from e

        RNS.log(f"{self} listening for UDP packets on port {self.bind_address[1]}", RNS.LOG_INFO)

    def _enqueue(self, item):
        try:
            self.received.put_nowait(item)
        except asyncio.QueueFull:
            self.dropped += 1
            self.overflow += 1
            if self.overflow == 1:
                RNS.log(f"{self} receive queue full, dropping datagrams until it drains", RNS.LOG_WARNING)
            return

        if self.overflow:
            RNS.log(f"{self} receive queue drained, {self.overflow} datagram(s) dropped "
                    f"({self.dropped} total)", RNS.LOG_WARNING)
            self.overflow = 0

    async def read(self, size):
        if self.transport is None:
            raise EndpointClosedError("UDP socket is not open")

        item = await self.received.get()
        if isinstance(item, EndpointClosedError):
            raise item
        if isinstance(item, Exception):
            raise EndpointIoError(f"error receiving UDP packet: {item}") from item

        data, sender = item
        self.last_sender = sender
        RNS.log(f"{self} received {len(data)} bytes from {sender}", RNS.LOG_EXTREME)
        return data[:size]

    async def write(self, data):
        if self.transport is None or self.transport.is_closing():
            raise EndpointClosedError("UDP socket is not open")

        destination = self.target or self.last_sender
        if destination is None:
            RNS.log(f"{self} no ground station address known yet, dropped {len(data)} bytes", RNS.LOG_DEBUG)
            return

        try:
            self.transport.sendto(data, destination)
        except OSError as e:
            raise EndpointIoError(f"error sending UDP packet to {destination}: {e}") from e
        RNS.log(f"{self} sent {len(data)} bytes to {destination}", RNS.LOG_EXTREME)

    def close(self):
        if self.transport is not None:
            self.transport.close()
            self.transport = None
            RNS.log(f"{self} closed", RNS.LOG_DEBUG)

    def __str__(self):
        return f"UdpEndpoint[{self.bind_address[0]}:{self.bind_address[1]}]"
