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

"""Local byte-stream endpoint abstraction (serial device or UDP socket)."""

from abc import ABC, abstractmethod


class LocalEndpoint(ABC):
    """
    The telemetry side of the bridge.

    Implementations must make read() suspend until data is available or a
    short timeout passes, so callers never spin on an idle endpoint.
    """

    @abstractmethod
    async def open(self):
        """
        Open the endpoint.

        Raises:
            EndpointOpenError: If the device or socket cannot be opened
        """

    @abstractmethod
    async def read(self, size: int) -> bytes:
        """
        Read whatever is available, up to `size` bytes. May return b"".

        Raises:
            EndpointIoError: Transient read failure, safe to retry
            EndpointClosedError: The endpoint is closed
        """

    @abstractmethod
    async def write(self, data: bytes):
        """
        Write the whole buffer.

        Raises:
            EndpointIoError: If the buffer could not be written in full
        """

    @abstractmethod
    def close(self):
        """Release the device or socket. Safe to call more than once."""
