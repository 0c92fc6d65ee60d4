"""
Tests for the flight controller's discovery loop.

The loop listens for ground station announces, opens a link when the
announce matches the configured destination and no link is tracked, and
re-arms once the tracker is cleared.
"""

import asyncio

import pytest

from rns_mavlink.bridge import FlightControllerBridge
from rns_mavlink.errors import MeshLinkError
from tests.mock_mesh_transport import MockMeshTransport, wait_until


@pytest.fixture
def bridge(mock_transport, mock_endpoint, gc_hash):
    return FlightControllerBridge(mock_transport, mock_endpoint, gc_hash, idle_interval=0.01)


async def start_discovery(bridge, transport):
    task = asyncio.ensure_future(bridge.link_loop())
    await wait_until(lambda: transport.announce_channel.subscriber_count == 1)
    return task


async def stop(task):
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


class TestAnnounceMatching:

    @pytest.mark.asyncio
    async def test_other_destination_ignored(self, bridge, mock_transport, other_hash):
        """Announces from other destinations leave the tracker untouched"""
        task = await start_discovery(bridge, mock_transport)
        try:
            for _ in range(3):
                mock_transport.simulate_announce(other_hash)
            await asyncio.sleep(0.05)

            assert bridge.tracker.get() is None
            assert mock_transport.links_opened == []
        finally:
            await stop(task)

    @pytest.mark.asyncio
    async def test_other_destination_does_not_replace_link(self, bridge, mock_transport, gc_hash, other_hash):
        task = await start_discovery(bridge, mock_transport)
        try:
            mock_transport.simulate_announce(gc_hash)
            await wait_until(lambda: bridge.tracker.get() is not None)
            link = bridge.tracker.get()

            mock_transport.simulate_announce(other_hash)
            await asyncio.sleep(0.05)

            assert bridge.tracker.get() is link
        finally:
            await stop(task)

    @pytest.mark.asyncio
    async def test_matching_announce_establishes_link(self, bridge, mock_transport, gc_hash):
        task = await start_discovery(bridge, mock_transport)
        try:
            mock_transport.simulate_announce(gc_hash)
            await wait_until(lambda: bridge.tracker.get() is not None)

            assert len(mock_transport.links_opened) == 1
            assert bridge.tracker.get() is mock_transport.links_opened[0]
        finally:
            await stop(task)

    @pytest.mark.asyncio
    async def test_repeated_announce_while_linked_ignored(self, bridge, mock_transport, gc_hash):
        """The ground station announces every second; only one link is opened"""
        task = await start_discovery(bridge, mock_transport)
        try:
            mock_transport.simulate_announce(gc_hash)
            await wait_until(lambda: bridge.tracker.get() is not None)

            for _ in range(5):
                mock_transport.simulate_announce(gc_hash)
            await asyncio.sleep(0.05)

            assert len(mock_transport.links_opened) == 1
        finally:
            await stop(task)


class TestRearm:

    @pytest.mark.asyncio
    async def test_new_link_after_tracker_cleared(self, bridge, mock_transport, gc_hash):
        task = await start_discovery(bridge, mock_transport)
        try:
            mock_transport.simulate_announce(gc_hash)
            await wait_until(lambda: bridge.tracker.get() is not None)
            first = bridge.tracker.get()

            bridge.tracker.clear()
            mock_transport.simulate_announce(gc_hash)
            await wait_until(lambda: bridge.tracker.get() is not None)

            assert bridge.tracker.get() is not first
            assert len(mock_transport.links_opened) == 2
        finally:
            await stop(task)

    @pytest.mark.asyncio
    async def test_link_failure_keeps_listening(self, bridge, mock_transport, gc_hash):
        """A failed link request is logged and the next announce retries"""
        mock_transport.link_error = MeshLinkError("no path")
        task = await start_discovery(bridge, mock_transport)
        try:
            mock_transport.simulate_announce(gc_hash)
            await asyncio.sleep(0.05)
            assert bridge.tracker.get() is None
            assert not task.done()

            mock_transport.simulate_announce(gc_hash)
            await wait_until(lambda: bridge.tracker.get() is not None)
        finally:
            await stop(task)


class TestStreamEnd:

    @pytest.mark.asyncio
    async def test_loop_ends_when_announce_stream_closes(self, bridge, mock_transport):
        task = await start_discovery(bridge, mock_transport)
        mock_transport.stop()

        await asyncio.wait_for(task, timeout=1.0)
        assert task.exception() is None

    @pytest.mark.asyncio
    async def test_lagged_announces_do_not_stop_loop(self, mock_endpoint, gc_hash, other_hash):
        transport = MockMeshTransport(mdu=100, channel_capacity=2)
        bridge = FlightControllerBridge(transport, mock_endpoint, gc_hash)
        task = await start_discovery(bridge, transport)
        try:
            for _ in range(6):
                transport.simulate_announce(other_hash)
            transport.simulate_announce(gc_hash)
            await wait_until(lambda: bridge.tracker.get() is not None)
            assert not task.done()
        finally:
            await stop(task)
