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
Lossy multi-subscriber broadcast channel for asyncio.

Reticulum announces and link events are fanned out to every subscriber.
Each subscriber owns a bounded buffer; when a slow subscriber's buffer is
full the oldest event is dropped and the drop is reported to that subscriber
as a ChannelLagError on its next recv(). Fast subscribers are unaffected.

THREADING MODEL:
- The channel is confined to one event loop. publish() and close() must be
  called on the loop thread; Reticulum callback threads go through
  loop.call_soon_threadsafe().
"""

import asyncio
from collections import deque

from rns_mavlink.errors import ChannelClosedError, ChannelLagError


class Subscription:
    """Receiving end of a BroadcastChannel."""

    def __init__(self, channel, capacity):
        self.channel = channel
        self.capacity = capacity
        self._buffer = deque()
        self._lagged = 0
        self._wakeup = asyncio.Event()

    def _push(self, item):
        if len(self._buffer) >= self.capacity:
            self._buffer.popleft()
            self._lagged += 1
        self._buffer.append(item)
        self._wakeup.set()

    def _wake(self):
        self._wakeup.set()

    async def recv(self):
        """
        Receive the next item.

        Returns:
            The oldest buffered item

        Raises:
            ChannelLagError: Items were dropped since the last recv(). Raised
                once; the following recv() resumes with the oldest kept item.
            ChannelClosedError: The channel is closed and the buffer is empty.
        """
        while True:
            if self._lagged:
                skipped = self._lagged
                self._lagged = 0
                raise ChannelLagError(skipped)

            if self._buffer:
                return self._buffer.popleft()

            if self.channel.closed:
                raise ChannelClosedError("channel closed")

            self._wakeup.clear()
            await self._wakeup.wait()

    def unsubscribe(self):
        """Stop receiving items from the channel."""
        self.channel._subscribers.discard(self)


class BroadcastChannel:
    """
    Bounded broadcast channel with drop-oldest overflow.

    Args:
        capacity: Per-subscriber buffer size
    """

    DEFAULT_CAPACITY = 256

    def __init__(self, capacity=DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError("channel capacity must be at least 1")
        self.capacity = capacity
        self.closed = False
        self._subscribers = set()

    def subscribe(self):
        """Create a subscription that receives every item published from now on."""
        subscription = Subscription(self, self.capacity)
        self._subscribers.add(subscription)
        if self.closed:
            subscription._wake()
        return subscription

    def publish(self, item):
        """
        Deliver an item to all current subscribers.

        Returns:
            int: Number of subscribers the item was delivered to
        """
        if self.closed:
            return 0
        for subscription in list(self._subscribers):
            subscription._push(item)
        return len(self._subscribers)

    def close(self):
        """Close the channel; receivers drain their buffers then see ChannelClosedError."""
        self.closed = True
        for subscription in list(self._subscribers):
            subscription._wake()

    @property
    def subscriber_count(self):
        return len(self._subscribers)
