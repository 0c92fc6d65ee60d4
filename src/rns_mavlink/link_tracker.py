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
Link tracking and peer matching shared by the bridge loops.

LinkTracker holds the single link to the target peer. The discovery loop (or
the ground side's activation handler) sets it, the inbound pump reads it and
the outbound pump clears it on link close.

LOCKING CONVENTION:
- The lock is held only to copy or replace the handle. Callers take a
  snapshot with get(), release, and only then call into the transport or
  the local endpoint.
"""

import threading

import RNS

from rns_mavlink.errors import ConfigurationError


ADDRESS_HASH_LENGTH = RNS.Reticulum.TRUNCATED_HASHLENGTH // 8


def parse_address_hash(hex_string):
    """
    Decode a hex-encoded Reticulum destination hash.

    Args:
        hex_string: 32 hex characters, optionally wrapped in <> as printed
            by RNS.prettyhexrep

    Returns:
        bytes: The 16-byte address hash

    Raises:
        ConfigurationError: If the string is not a valid destination hash
    """
    if not isinstance(hex_string, str):
        raise ConfigurationError(f"destination hash must be a hex string, got {hex_string!r}")

    cleaned = hex_string.strip().strip("<>").replace(":", "")
    try:
        address_hash = bytes.fromhex(cleaned)
    except ValueError as e:
        raise ConfigurationError(f"invalid destination hash {hex_string!r}: {e}") from e

    if len(address_hash) != ADDRESS_HASH_LENGTH:
        raise ConfigurationError(
            f"invalid destination hash {hex_string!r}: expected {ADDRESS_HASH_LENGTH} bytes, "
            f"got {len(address_hash)}"
        )
    return address_hash


class PeerFilter:
    """Matches events against the one peer address this bridge serves."""

    def __init__(self, address_hash):
        if len(address_hash) != ADDRESS_HASH_LENGTH:
            raise ConfigurationError(
                f"peer address must be {ADDRESS_HASH_LENGTH} bytes, got {len(address_hash)}"
            )
        self.address_hash = bytes(address_hash)

    def matches(self, address_hash):
        return address_hash == self.address_hash

    def __str__(self):
        return RNS.prettyhexrep(self.address_hash)


class LinkTracker:
    """Mutex-guarded slot holding the current link, or None."""

    def __init__(self):
        self._link = None
        self._lock = threading.Lock()

    def set(self, link):
        """Install a link, replacing any previous one."""
        with self._lock:
            self._link = link

    def get(self):
        """Return a snapshot of the current link, or None."""
        with self._lock:
            return self._link

    def clear(self):
        """
        Remove the current link.

        Returns:
            The link that was removed, or None if the tracker was already empty
        """
        with self._lock:
            link, self._link = self._link, None
        return link

    def clear_if(self, link_id):
        """
        Remove the current link only if it is the link with `link_id`.

        A close event for a link that has since been replaced leaves the
        replacement in place.

        Returns:
            The link that was removed, or None
        """
        with self._lock:
            if self._link is None or self._link.link_id != link_id:
                return None
            link, self._link = self._link, None
        return link

    @property
    def active(self):
        return self.get() is not None
