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
Mesh transport abstraction.

The bridge core talks to the mesh network only through MeshTransport.
ReticulumTransport is the production implementation; tests drive the bridge
with an in-memory implementation of the same interface.

Events flow out of the transport through broadcast channels:
- announces: one Subscription of AnnounceEvent per subscribe_announces() call
- link events: one stream for links we initiated (out) and one for links
  terminating at our own destinations (in)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class LinkEventKind(Enum):
    DATA = "data"
    ACTIVATED = "activated"
    CLOSED = "closed"


@dataclass(frozen=True)
class LinkEvent:
    """
    Something happened on a link.

    Attributes:
        kind: DATA, ACTIVATED or CLOSED
        link_id: Transport link identifier
        address_hash: Destination hash the link belongs to. For outbound links
            this is the remote destination, for inbound links our own.
        payload: Received bytes (DATA only)
        link: Borrowed reference to the transport's link object
    """
    kind: LinkEventKind
    link_id: bytes
    address_hash: bytes
    payload: bytes = b""
    link: Any = None


@dataclass(frozen=True)
class AnnounceEvent:
    """A destination announce heard on the mesh."""
    destination_hash: bytes
    identity: Any
    app_data: Optional[bytes] = None
    name: str = ""


class MeshTransport(ABC):
    """Interface to the mesh network stack used by the bridge."""

    @property
    @abstractmethod
    def mdu(self) -> int:
        """Largest payload accepted by send()."""

    @abstractmethod
    def start(self):
        """Bring the transport up. Must be called from within the running event loop."""

    @abstractmethod
    def stop(self):
        """Tear down links, stop delivering events and close all channels."""

    @abstractmethod
    def add_in_destination(self, app_name: str, *aspects: str):
        """Create an inbound destination that accepts links; returns the destination."""

    @abstractmethod
    def announce(self, destination, app_data: Optional[bytes] = None):
        """Broadcast an announce for a destination created by add_in_destination()."""

    @abstractmethod
    def subscribe_announces(self, name: str):
        """Return a Subscription of AnnounceEvent for destinations named `name`."""

    @abstractmethod
    async def establish_link(self, announce: AnnounceEvent):
        """Open a link to the announced destination and return the link handle."""

    @abstractmethod
    def out_link_events(self):
        """Return a Subscription of LinkEvent for links this node initiated."""

    @abstractmethod
    def in_link_events(self):
        """Return a Subscription of LinkEvent for links to this node's destinations."""

    @abstractmethod
    def send(self, link, data: bytes):
        """
        Submit one packet on a link.

        Raises:
            MeshLinkError: If the packet cannot be built or submitted
        """

    @abstractmethod
    def link_active(self, link) -> bool:
        """True once a link is established and can carry packets."""
