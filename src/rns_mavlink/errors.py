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
Error types raised by the bridge.

Startup errors (ConfigurationError, EndpointOpenError) surface from
Bridge.run() or config loading and end the process. Steady-state errors are
handled by the pump that owns them; only EndpointIoError on the write path
and EndpointClosedError escalate to a bridge-wide shutdown.
"""


class BridgeError(Exception):
    """Base class for all bridge errors."""


class ConfigurationError(BridgeError):
    """Malformed or missing configuration value (e.g. a bad destination hash)."""


class EndpointOpenError(BridgeError):
    """The serial device could not be opened or the UDP socket could not be bound."""


class EndpointIoError(BridgeError):
    """Read or write failure on an open local endpoint."""


class EndpointClosedError(EndpointIoError):
    """The local endpoint is closed; no further I/O is possible."""


class ChannelLagError(BridgeError):
    """
    A broadcast channel receiver fell behind and events were dropped.

    Args:
        skipped: Number of events dropped since the previous receive
    """

    def __init__(self, skipped):
        super().__init__(f"receiver lagged, {skipped} event(s) dropped")
        self.skipped = skipped


class ChannelClosedError(BridgeError):
    """The broadcast channel was closed and all buffered events were consumed."""


class MeshLinkError(BridgeError):
    """Failure establishing a link or building/submitting a packet on it."""
