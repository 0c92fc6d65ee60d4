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
Bridge - MAVLink byte stream over a single Reticulum link

Carries the byte stream of a local endpoint (serial port on the aircraft,
UDP socket on the ground) to exactly one peer across the mesh, and the
peer's bytes back.

ARCHITECTURE:
- Link acquisition: the flight controller discovers the ground station from
  its announces and opens a link; the ground station announces itself and
  accepts the link
- Inbound pump: local endpoint -> fragments of at most MDU bytes -> link
- Outbound pump: link events -> local endpoint; clears the tracked link on close
- Supervisor: runs the units above plus a shutdown signal; the first one to
  finish cancels the rest

LINK STATE:
- LinkTracker holds the one usable link. Discovery (or activation on the
  ground side) sets it, the inbound pump reads it, the outbound pump clears it.
- Discovery re-arms on its own: it only opens a link while the tracker is
  empty, so the first matching announce after a close restores the circuit.

DELIVERY:
- Best effort. Events dropped by a lagging channel are logged, not replayed.
- Shutdown does not drain; bytes in flight when a unit exits may be lost.
"""

import asyncio
from abc import ABC, abstractmethod

import RNS

from rns_mavlink.errors import (
    BridgeError,
    ChannelClosedError,
    ChannelLagError,
    EndpointClosedError,
    EndpointIoError,
    MeshLinkError,
)
from rns_mavlink.link_tracker import LinkTracker, PeerFilter
from rns_mavlink.mesh_transport import LinkEventKind


APP_NAME = "rns_mavlink"
FC_ASPECT = "fc"
GC_ASPECT = "gc"


def fragment(data, mdu):
    """
    Split data into consecutive chunks of at most `mdu` bytes.

    Args:
        data: Bytes to split
        mdu: Maximum chunk size

    Returns:
        list: Chunks in order; their concatenation equals `data`
    """
    if mdu < 1:
        raise ValueError(f"MDU must be positive, got {mdu}")
    view = memoryview(data)
    return [bytes(view[i:i + mdu]) for i in range(0, len(view), mdu)]


class Bridge(ABC):
    """
    Bridge core shared by both ends of the circuit.

    Subclasses provide the link-acquisition unit and choose which link event
    stream the outbound pump consumes.

    Args:
        transport: MeshTransport implementation
        endpoint: LocalEndpoint implementation
        peer_filter: PeerFilter for the address carried by this bridge's link
            events; may be left None for setup() to fill in
        idle_interval: Seconds to wait while no link is available or after a read error
        read_size: Maximum bytes taken from the endpoint per read
    """

    IDLE_INTERVAL = 0.1  # seconds
    READ_SIZE = 2 ** 16

    def __init__(self, transport, endpoint, peer_filter=None, idle_interval=IDLE_INTERVAL, read_size=READ_SIZE):
        self.transport = transport
        self.endpoint = endpoint
        self.peer_filter = peer_filter
        self.idle_interval = idle_interval
        self.read_size = read_size

        self.tracker = LinkTracker()
        self.shutdown_event = asyncio.Event()

        self.txb = 0  # bytes submitted to the mesh
        self.rxb = 0  # bytes written to the local endpoint

    # --- Lifecycle ---

    def stop(self):
        """Request a cooperative shutdown."""
        self.shutdown_event.set()

    async def run(self):
        """
        Open the local endpoint and run the bridge until one unit exits.

        Returns normally on cooperative shutdown or when a stream ends.

        Raises:
            EndpointOpenError: If the local endpoint cannot be opened
            BridgeError: The failure that made a unit exit (e.g. a write error)
        """
        await self.endpoint.open()
        try:
            self.setup()
            await self.supervise()
        finally:
            self.tracker.clear()
            self.endpoint.close()

    def setup(self):
        """Hook for role-specific setup after the endpoint is open."""

    def units(self):
        """Return (name, coroutine) pairs supervised by run()."""
        return [
            ("link loop", self.link_loop()),
            ("inbound pump", self.inbound_pump()),
            ("outbound pump", self.outbound_pump(self.link_events())),
            ("shutdown listener", self.shutdown_event.wait()),
        ]

    async def supervise(self):
        tasks = {}
        for name, coroutine in self.units():
            tasks[asyncio.ensure_future(coroutine)] = name

        try:
            done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        failure = None
        for task in done:
            name = tasks[task]
            if task.cancelled():
                RNS.log(f"{self} {name} cancelled: shutting down", RNS.LOG_INFO)
                continue
            exc = task.exception()
            if exc is None:
                RNS.log(f"{self} {name} exited: shutting down", RNS.LOG_INFO)
            else:
                RNS.log(f"{self} {name} failed: {type(exc).__name__}: {exc}: shutting down", RNS.LOG_ERROR)
                failure = failure or exc

        if failure is not None:
            raise failure

    # --- Link acquisition ---

    @abstractmethod
    async def link_loop(self):
        """Acquire the link: discovery on the aircraft, announces on the ground."""

    @abstractmethod
    def link_events(self):
        """Return the link event Subscription consumed by the outbound pump."""

    # --- Inbound pump: local endpoint -> mesh ---

    async def inbound_pump(self):
        RNS.log(f"{self} inbound pump waiting for a link", RNS.LOG_DEBUG)
        while True:
            # A requested link is tracked before it is active
            link = self.tracker.get()
            if link is None or not self.transport.link_active(link):
                await asyncio.sleep(self.idle_interval)
                continue

            try:
                data = await self.endpoint.read(self.read_size)
            except EndpointClosedError:
                raise
            except EndpointIoError as e:
                RNS.log(f"{self} error reading {self.endpoint}: {e}", RNS.LOG_ERROR)
                await asyncio.sleep(self.idle_interval)
                continue

            if not data:
                continue

            RNS.log(f"{self} read {len(data)} bytes", RNS.LOG_EXTREME)

            # The link may have closed while we were blocked on the read
            link = self.tracker.get()
            if link is None or not self.transport.link_active(link):
                RNS.log(f"{self} link lost during read, dropped {len(data)} bytes", RNS.LOG_DEBUG)
                continue

            self.forward(link, data)

    def forward(self, link, data):
        """Send data over a link in chunks no larger than the transport MDU."""
        chunks = fragment(data, self.transport.mdu)
        for i, chunk in enumerate(chunks):
            try:
                self.transport.send(link, chunk)
                self.txb += len(chunk)
            except MeshLinkError as e:
                RNS.log(f"{self} dropped fragment {i+1}/{len(chunks)} ({len(chunk)} bytes): {e}", RNS.LOG_ERROR)

    # --- Outbound pump: mesh -> local endpoint ---

    async def outbound_pump(self, events):
        """
        Drain link events for our peer into the local endpoint.

        Args:
            events: Subscription of LinkEvent, taken before any unit starts so
                no activation is missed
        """
        try:
            while True:
                try:
                    event = await events.recv()
                except ChannelLagError as e:
                    RNS.log(f"{self} link events lagged: {e.skipped} event(s) dropped", RNS.LOG_WARNING)
                    continue
                except ChannelClosedError:
                    RNS.log(f"{self} link event stream closed", RNS.LOG_WARNING)
                    return

                if self.peer_filter.matches(event.address_hash):
                    await self.handle_link_event(event)
        finally:
            events.unsubscribe()

    async def handle_link_event(self, event):
        if event.kind is LinkEventKind.DATA:
            RNS.log(f"{self} link {RNS.prettyhexrep(event.link_id)} payload ({len(event.payload)})",
                    RNS.LOG_EXTREME)
            try:
                await self.endpoint.write(event.payload)
            except EndpointIoError as e:
                RNS.log(f"{self} error writing {len(event.payload)} bytes to {self.endpoint}: {e}",
                        RNS.LOG_ERROR)
                raise
            self.rxb += len(event.payload)

        elif event.kind is LinkEventKind.ACTIVATED:
            RNS.log(f"{self} link activated {RNS.prettyhexrep(event.link_id)}", RNS.LOG_INFO)
            self.link_activated(event)

        elif event.kind is LinkEventKind.CLOSED:
            RNS.log(f"{self} link closed {RNS.prettyhexrep(event.link_id)}", RNS.LOG_WARNING)
            # A late close for a replaced link must not drop its successor
            if self.tracker.clear_if(event.link_id) is None:
                RNS.log(f"{self} closed link {RNS.prettyhexrep(event.link_id)} was not the tracked link",
                        RNS.LOG_DEBUG)

    def link_activated(self, event):
        """Hook for role-specific handling of an activated link."""


class FlightControllerBridge(Bridge):
    """
    Aircraft end: serial port <-> link to the ground station.

    Discovers the ground station from its announces and opens the link.

    Args:
        transport: MeshTransport implementation
        endpoint: Usually a SerialEndpoint
        gc_destination: Ground station destination hash (bytes)
    """

    def __init__(self, transport, endpoint, gc_destination, **kwargs):
        super().__init__(transport, endpoint, PeerFilter(gc_destination), **kwargs)
        self.in_destination = None

    def setup(self):
        # Published so the ground side can be configured with our address; not announced
        self.in_destination = self.transport.add_in_destination(APP_NAME, FC_ASPECT)
        RNS.log(f"{self} created destination: {RNS.prettyhexrep(self.in_destination.hash)}", RNS.LOG_INFO)

    def link_events(self):
        return self.transport.out_link_events()

    async def link_loop(self):
        """
        Discovery loop.

        Opens a link to the ground station whenever its announce is heard and
        no link is tracked. Ends only when the announce stream closes.
        """
        announces = self.transport.subscribe_announces(f"{APP_NAME}.{GC_ASPECT}")
        RNS.log(f"{self} waiting for announces from {self.peer_filter}", RNS.LOG_INFO)
        try:
            while True:
                try:
                    announce = await announces.recv()
                except ChannelLagError as e:
                    RNS.log(f"{self} announces lagged: {e.skipped} announce(s) dropped", RNS.LOG_WARNING)
                    continue
                except ChannelClosedError:
                    RNS.log(f"{self} announce stream closed", RNS.LOG_WARNING)
                    return

                if not self.peer_filter.matches(announce.destination_hash):
                    continue

                if self.tracker.active:
                    RNS.log(f"{self} link already tracked, ignoring announce", RNS.LOG_EXTREME)
                    continue

                RNS.log(f"{self} ground station announce received, establishing link", RNS.LOG_INFO)
                try:
                    link = await self.transport.establish_link(announce)
                except MeshLinkError as e:
                    RNS.log(f"{self} could not establish link: {e}", RNS.LOG_ERROR)
                    continue

                self.tracker.set(link)
        finally:
            announces.unsubscribe()

    def __str__(self):
        return f"FlightControllerBridge[{self.endpoint}]"


class GroundControlBridge(Bridge):
    """
    Ground end: UDP socket <-> link from the aircraft.

    Announces the ground destination periodically and tracks the link the
    aircraft opens to it.

    Args:
        transport: MeshTransport implementation
        endpoint: Usually a UdpEndpoint
        fc_destination: Expected flight controller destination hash (bytes),
            reported at startup
        announce_interval: Seconds between announces
    """

    ANNOUNCE_INTERVAL = 1.0  # seconds

    def __init__(self, transport, endpoint, fc_destination=None, announce_interval=ANNOUNCE_INTERVAL, **kwargs):
        super().__init__(transport, endpoint, **kwargs)
        self.fc_destination = fc_destination
        self.announce_interval = announce_interval
        self.in_destination = None

    def setup(self):
        # Inbound link events carry our own destination hash
        self.in_destination = self.transport.add_in_destination(APP_NAME, GC_ASPECT)
        self.peer_filter = PeerFilter(self.in_destination.hash)

        RNS.log(f"{self} created in destination: {RNS.prettyhexrep(self.in_destination.hash)}", RNS.LOG_INFO)
        if self.fc_destination is not None:
            RNS.log(f"{self} expecting flight controller {RNS.prettyhexrep(self.fc_destination)}", RNS.LOG_INFO)

    def link_events(self):
        return self.transport.in_link_events()

    async def link_loop(self):
        """Announce loop; runs until cancelled."""
        while True:
            self.transport.announce(self.in_destination)
            await asyncio.sleep(self.announce_interval)

    def link_activated(self, event):
        self.tracker.set(event.link)

    def __str__(self):
        return f"GroundControlBridge[{self.endpoint}]"
