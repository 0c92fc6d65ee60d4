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
ReticulumTransport - MeshTransport backed by the Reticulum Network Stack

Reticulum does its work on its own threads and reports announces, link
establishment, link closure and packets through callbacks. This adapter turns
those callbacks into LinkEvent/AnnounceEvent items on asyncio broadcast
channels so the bridge loops can consume them with await.

THREADING MODEL:
- RNS callbacks run on Reticulum's threads
- Events are handed to the event loop with loop.call_soon_threadsafe()
- links_lock guards the table of open links; it is never held while calling
  into RNS
"""

import asyncio
import functools
import os
import threading

import RNS

from rns_mavlink.channel import BroadcastChannel
from rns_mavlink.errors import MeshLinkError
from rns_mavlink.mesh_transport import AnnounceEvent, LinkEvent, LinkEventKind, MeshTransport


class _AnnounceHandler:
    """Announce handler registered with RNS.Transport for one destination name."""

    def __init__(self, transport, aspect_filter, channel):
        self.transport = transport
        self.aspect_filter = aspect_filter
        self.channel = channel

    def received_announce(self, destination_hash, announced_identity, app_data):
        RNS.log(f"{self.transport} announce for {self.aspect_filter} from "
                f"{RNS.prettyhexrep(destination_hash)}", RNS.LOG_DEBUG)
        event = AnnounceEvent(
            destination_hash=destination_hash,
            identity=announced_identity,
            app_data=app_data,
            name=self.aspect_filter,
        )
        self.transport._publish(self.channel, event)


class ReticulumTransport(MeshTransport):
    """
    Mesh transport over Reticulum.

    Args:
        name: Short node name ("fc" or "gc"), used for the identity file
        configdir: Reticulum config directory (None for the default)
        identity_path: Where the node identity is stored; defaults to
            <reticulum storage>/rns_mavlink_<name>
        loglevel: RNS log level passed to RNS.Reticulum
        channel_capacity: Per-subscriber event buffer size
    """

    def __init__(self, name, configdir=None, identity_path=None, loglevel=None,
                 channel_capacity=BroadcastChannel.DEFAULT_CAPACITY):
        self.name = name
        self.configdir = configdir
        self.identity_path = identity_path
        self.loglevel = loglevel

        self.loop = None
        self.reticulum = None
        self.identity = None

        self.announce_channels = []
        self.announce_handlers = []
        self.out_channel = BroadcastChannel(channel_capacity)
        self.in_channel = BroadcastChannel(channel_capacity)

        self.links = {}  # link_id -> RNS.Link
        self.links_lock = threading.Lock()
        self.channel_capacity = channel_capacity

    @property
    def mdu(self):
        return RNS.Link.MDU

    def start(self):
        self.loop = asyncio.get_running_loop()

        RNS.log(f"{self} starting reticulum", RNS.LOG_INFO)
        self.reticulum = RNS.Reticulum(configdir=self.configdir, loglevel=self.loglevel)
        self.identity = self._load_identity()
        RNS.log(f"{self} identity {RNS.prettyhexrep(self.identity.hash)}", RNS.LOG_INFO)

    def _load_identity(self):
        """Load the node identity from disk, creating and saving one on first run."""
        if self.identity_path is None:
            self.identity_path = os.path.join(RNS.Reticulum.storagepath, f"rns_mavlink_{self.name}")

        if os.path.isfile(self.identity_path):
            identity = RNS.Identity.from_file(self.identity_path)
            if identity is not None:
                RNS.log(f"{self} loaded identity from {self.identity_path}", RNS.LOG_DEBUG)
                return identity
            RNS.log(f"{self} could not load identity from {self.identity_path}, creating a new one",
                    RNS.LOG_WARNING)

        identity = RNS.Identity()
        identity.to_file(self.identity_path)
        RNS.log(f"{self} created new identity, saved to {self.identity_path}", RNS.LOG_INFO)
        return identity

    def stop(self):
        RNS.log(f"{self} stopping", RNS.LOG_DEBUG)

        for handler in self.announce_handlers:
            try:
                RNS.Transport.deregister_announce_handler(handler)
            except Exception as e:
                RNS.log(f"{self} error deregistering announce handler: {e}", RNS.LOG_WARNING)
        self.announce_handlers.clear()

        with self.links_lock:
            links = list(self.links.values())
            self.links.clear()

        for link in links:
            try:
                link.teardown()
            except Exception as e:
                RNS.log(f"{self} error tearing down link: {e}", RNS.LOG_WARNING)

        for channel in self.announce_channels:
            channel.close()
        self.out_channel.close()
        self.in_channel.close()

    def _publish(self, channel, event):
        """Hand an event to the event loop from any thread."""
        if self.loop is None:
            return
        try:
            self.loop.call_soon_threadsafe(channel.publish, event)
        except RuntimeError:
            # Event loop already closed during shutdown
            RNS.log(f"{self} dropped event after loop shutdown", RNS.LOG_DEBUG)

    # --- Destinations & announces ---

    def add_in_destination(self, app_name, *aspects):
        destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects
        )
        destination.set_link_established_callback(
            functools.partial(self._in_link_established, destination.hash)
        )
        RNS.log(f"{self} created in destination {'.'.join((app_name,) + aspects)}: "
                f"{RNS.prettyhexrep(destination.hash)}", RNS.LOG_INFO)
        return destination

    def announce(self, destination, app_data=None):
        destination.announce(app_data=app_data)
        RNS.log(f"{self} sent announce for {RNS.prettyhexrep(destination.hash)}", RNS.LOG_EXTREME)

    def subscribe_announces(self, name):
        channel = BroadcastChannel(self.channel_capacity)
        subscription = channel.subscribe()
        handler = _AnnounceHandler(self, name, channel)
        RNS.Transport.register_announce_handler(handler)

        self.announce_channels.append(channel)
        self.announce_handlers.append(handler)
        RNS.log(f"{self} listening for announces of {name}", RNS.LOG_DEBUG)
        return subscription

    # --- Links ---

    async def establish_link(self, announce):
        return await self.loop.run_in_executor(None, self._open_link, announce)

    def _open_link(self, announce):
        app_name, *aspects = announce.name.split(".")
        try:
            destination = RNS.Destination(
                announce.identity,
                RNS.Destination.OUT,
                RNS.Destination.SINGLE,
                app_name,
                *aspects
            )
        except Exception as e:
            raise MeshLinkError(f"could not build destination for {announce.name}: {e}") from e

        if destination.hash != announce.destination_hash:
            raise MeshLinkError(
                f"announced destination {RNS.prettyhexrep(announce.destination_hash)} "
                f"does not match {announce.name} for its identity"
            )

        try:
            link = RNS.Link(
                destination,
                established_callback=self._out_link_established,
                closed_callback=self._out_link_closed,
            )
            link.set_packet_callback(functools.partial(self._link_packet, self.out_channel, destination.hash))
        except Exception as e:
            raise MeshLinkError(f"could not open link to {RNS.prettyhexrep(destination.hash)}: {e}") from e

        with self.links_lock:
            self.links[link.link_id] = link

        RNS.log(f"{self} requested link {RNS.prettyhexrep(link.link_id)} to "
                f"{RNS.prettyhexrep(destination.hash)}", RNS.LOG_INFO)
        return link

    def _out_link_established(self, link):
        self._publish(self.out_channel, LinkEvent(
            LinkEventKind.ACTIVATED, link.link_id, link.destination.hash, link=link
        ))

    def _out_link_closed(self, link):
        self._forget_link(link)
        self._publish(self.out_channel, LinkEvent(
            LinkEventKind.CLOSED, link.link_id, link.destination.hash, link=link
        ))

    def _in_link_established(self, address_hash, link):
        with self.links_lock:
            self.links[link.link_id] = link

        link.set_packet_callback(functools.partial(self._link_packet, self.in_channel, address_hash))
        link.set_link_closed_callback(functools.partial(self._in_link_closed, address_hash))
        self._publish(self.in_channel, LinkEvent(
            LinkEventKind.ACTIVATED, link.link_id, address_hash, link=link
        ))

    def _in_link_closed(self, address_hash, link):
        self._forget_link(link)
        self._publish(self.in_channel, LinkEvent(
            LinkEventKind.CLOSED, link.link_id, address_hash, link=link
        ))

    def _link_packet(self, channel, address_hash, message, packet):
        link = packet.link
        self._publish(channel, LinkEvent(
            LinkEventKind.DATA, link.link_id, address_hash, payload=bytes(message), link=link
        ))

    def _forget_link(self, link):
        with self.links_lock:
            self.links.pop(link.link_id, None)

    def out_link_events(self):
        return self.out_channel.subscribe()

    def in_link_events(self):
        return self.in_channel.subscribe()

    def link_active(self, link):
        return link.status == RNS.Link.ACTIVE

    def send(self, link, data):
        if len(data) > self.mdu:
            raise MeshLinkError(f"payload of {len(data)} bytes exceeds link MDU of {self.mdu}")

        if not self.link_active(link):
            raise MeshLinkError(f"link {RNS.prettyhexrep(link.link_id)} is not active")

        try:
            receipt = RNS.Packet(link, data).send()
        except Exception as e:
            raise MeshLinkError(f"error sending packet on link {RNS.prettyhexrep(link.link_id)}: {e}") from e

        if receipt is False:
            raise MeshLinkError(f"no interface accepted packet for link {RNS.prettyhexrep(link.link_id)}")

    def __str__(self):
        return f"ReticulumTransport[{self.name}]"
