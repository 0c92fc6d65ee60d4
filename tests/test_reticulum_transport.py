"""
Tests for the Reticulum adapter.

RNS is patched where a call would need a running Reticulum instance; the
callback plumbing from RNS threads into the event loop runs for real.
"""

import asyncio
import threading
from unittest.mock import MagicMock, Mock, patch

import pytest
import RNS

from rns_mavlink.errors import ChannelClosedError, MeshLinkError
from rns_mavlink.mesh_transport import AnnounceEvent, LinkEventKind
from rns_mavlink.reticulum_transport import ReticulumTransport
from tests.conftest import GC_HASH, OTHER_HASH


def make_link(link_id=b"\x01" * 16, status=None):
    link = MagicMock()
    link.link_id = link_id
    link.status = RNS.Link.ACTIVE if status is None else status
    return link


@pytest.fixture
def transport():
    return ReticulumTransport("fc")


async def running(transport):
    transport.loop = asyncio.get_running_loop()
    return transport


def call_from_thread(fn, *args):
    thread = threading.Thread(target=fn, args=args)
    thread.start()
    thread.join()


class TestSend:

    def test_oversized_payload_rejected(self, transport):
        with patch("RNS.Packet") as packet:
            with pytest.raises(MeshLinkError, match="exceeds"):
                transport.send(make_link(), bytes(transport.mdu + 1))
            packet.assert_not_called()

    def test_inactive_link_rejected(self, transport):
        with patch("RNS.Packet") as packet:
            with pytest.raises(MeshLinkError, match="not active"):
                transport.send(make_link(status=RNS.Link.CLOSED), b"data")
            packet.assert_not_called()

    def test_link_active_follows_status(self, transport):
        assert transport.link_active(make_link())
        assert not transport.link_active(make_link(status=RNS.Link.PENDING))
        assert not transport.link_active(make_link(status=RNS.Link.CLOSED))

    def test_packet_sent_on_link(self, transport):
        link = make_link()
        with patch("RNS.Packet") as packet:
            packet.return_value.send.return_value = Mock()
            transport.send(link, b"\xfd" * transport.mdu)

        packet.assert_called_once_with(link, b"\xfd" * transport.mdu)
        packet.return_value.send.assert_called_once()

    def test_unsent_packet_is_an_error(self, transport):
        with patch("RNS.Packet") as packet:
            packet.return_value.send.return_value = False
            with pytest.raises(MeshLinkError):
                transport.send(make_link(), b"data")

    def test_packet_exception_wrapped(self, transport):
        with patch("RNS.Packet", side_effect=OSError("interface down")):
            with pytest.raises(MeshLinkError, match="interface down"):
                transport.send(make_link(), b"data")


class TestAnnounces:

    @pytest.mark.asyncio
    async def test_announce_from_rns_thread_reaches_subscriber(self, transport):
        await running(transport)
        with patch.object(RNS.Transport, "register_announce_handler") as register:
            subscription = transport.subscribe_announces("rns_mavlink.gc")

        handler = register.call_args.args[0]
        assert handler.aspect_filter == "rns_mavlink.gc"

        identity = Mock()
        call_from_thread(handler.received_announce, GC_HASH, identity, b"app")

        event = await asyncio.wait_for(subscription.recv(), timeout=1.0)
        assert event == AnnounceEvent(GC_HASH, identity, app_data=b"app", name="rns_mavlink.gc")

    def test_events_before_start_dropped(self, transport):
        channel = MagicMock()
        transport._publish(channel, "event")
        channel.publish.assert_not_called()

    def test_announce_passes_app_data(self, transport):
        destination = MagicMock()
        destination.hash = GC_HASH
        transport.announce(destination, app_data=b"qgc")
        destination.announce.assert_called_once_with(app_data=b"qgc")


class TestInboundLinks:

    @pytest.mark.asyncio
    async def test_in_link_lifecycle(self, transport):
        await running(transport)
        events = transport.in_link_events()
        link = make_link()

        call_from_thread(transport._in_link_established, GC_HASH, link)
        event = await asyncio.wait_for(events.recv(), timeout=1.0)
        assert event.kind is LinkEventKind.ACTIVATED
        assert event.address_hash == GC_HASH
        assert event.link is link
        assert transport.links == {link.link_id: link}

        packet_callback = link.set_packet_callback.call_args.args[0]
        call_from_thread(packet_callback, b"telemetry", Mock(link=link))
        event = await asyncio.wait_for(events.recv(), timeout=1.0)
        assert event.kind is LinkEventKind.DATA
        assert event.payload == b"telemetry"
        assert event.address_hash == GC_HASH

        closed_callback = link.set_link_closed_callback.call_args.args[0]
        call_from_thread(closed_callback, link)
        event = await asyncio.wait_for(events.recv(), timeout=1.0)
        assert event.kind is LinkEventKind.CLOSED
        assert transport.links == {}

    @pytest.mark.asyncio
    async def test_in_destination_registers_callback(self, transport):
        await running(transport)
        transport.identity = Mock()
        with patch("RNS.Destination") as destination_class:
            destination_class.return_value.hash = GC_HASH
            destination = transport.add_in_destination("rns_mavlink", "gc")

        args = destination_class.call_args.args
        assert args[0] is transport.identity
        assert args[-2:] == ("rns_mavlink", "gc")

        callback = destination.set_link_established_callback.call_args.args[0]
        events = transport.in_link_events()
        link = make_link()
        callback(link)
        event = await asyncio.wait_for(events.recv(), timeout=1.0)
        assert event.address_hash == GC_HASH


class TestOutboundLinks:

    @pytest.mark.asyncio
    async def test_establish_link(self, transport):
        await running(transport)
        announce = AnnounceEvent(GC_HASH, Mock(), name="rns_mavlink.gc")
        link = make_link()

        with patch("RNS.Destination") as destination_class, patch("RNS.Link", return_value=link) as link_class:
            destination_class.return_value.hash = GC_HASH
            result = await transport.establish_link(announce)

        assert result is link
        assert destination_class.call_args.args[-2:] == ("rns_mavlink", "gc")
        assert link_class.call_args.args[0] is destination_class.return_value
        assert transport.links == {link.link_id: link}

    @pytest.mark.asyncio
    async def test_out_link_events(self, transport):
        await running(transport)
        events = transport.out_link_events()
        link = make_link()
        link.destination.hash = GC_HASH

        call_from_thread(transport._out_link_established, link)
        call_from_thread(transport._out_link_closed, link)

        activated = await asyncio.wait_for(events.recv(), timeout=1.0)
        closed = await asyncio.wait_for(events.recv(), timeout=1.0)
        assert (activated.kind, closed.kind) == (LinkEventKind.ACTIVATED, LinkEventKind.CLOSED)
        assert activated.address_hash == closed.address_hash == GC_HASH

    @pytest.mark.asyncio
    async def test_destination_mismatch(self, transport):
        await running(transport)
        announce = AnnounceEvent(GC_HASH, Mock(), name="rns_mavlink.gc")

        with patch("RNS.Destination") as destination_class, patch("RNS.Link") as link_class:
            destination_class.return_value.hash = OTHER_HASH
            with pytest.raises(MeshLinkError, match="does not match"):
                await transport.establish_link(announce)

        link_class.assert_not_called()

    @pytest.mark.asyncio
    async def test_link_creation_failure(self, transport):
        await running(transport)
        announce = AnnounceEvent(GC_HASH, Mock(), name="rns_mavlink.gc")

        with patch("RNS.Destination") as destination_class, \
                patch("RNS.Link", side_effect=ValueError("no path")):
            destination_class.return_value.hash = GC_HASH
            with pytest.raises(MeshLinkError, match="no path"):
                await transport.establish_link(announce)

        assert transport.links == {}


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_stop_closes_streams_and_links(self, transport):
        await running(transport)
        with patch.object(RNS.Transport, "register_announce_handler"):
            announces = transport.subscribe_announces("rns_mavlink.gc")
        events = transport.out_link_events()
        link = make_link()
        transport.links[link.link_id] = link

        with patch.object(RNS.Transport, "deregister_announce_handler") as deregister:
            transport.stop()

        deregister.assert_called_once()
        link.teardown.assert_called_once()
        with pytest.raises(ChannelClosedError):
            await announces.recv()
        with pytest.raises(ChannelClosedError):
            await events.recv()

    @pytest.mark.asyncio
    async def test_start(self, tmp_path):
        transport = ReticulumTransport("gc", configdir=str(tmp_path), loglevel=RNS.LOG_DEBUG)
        identity = Mock(hash=GC_HASH)

        with patch("RNS.Reticulum") as reticulum, \
                patch.object(transport, "_load_identity", return_value=identity):
            transport.start()

        reticulum.assert_called_once_with(configdir=str(tmp_path), loglevel=RNS.LOG_DEBUG)
        assert transport.identity is identity
        assert transport.loop is asyncio.get_running_loop()

    def test_identity_created_then_reused(self, tmp_path):
        identity_path = str(tmp_path / "fc_identity")

        first = ReticulumTransport("fc", identity_path=identity_path)._load_identity()
        assert (tmp_path / "fc_identity").is_file()

        second = ReticulumTransport("fc", identity_path=identity_path)._load_identity()
        assert second.hash == first.hash

    def test_default_identity_path(self, tmp_path, monkeypatch):
        monkeypatch.setattr(RNS.Reticulum, "storagepath", str(tmp_path), raising=False)
        transport = ReticulumTransport("gc")

        transport._load_identity()

        assert transport.identity_path == str(tmp_path / "rns_mavlink_gc")
        assert (tmp_path / "rns_mavlink_gc").is_file()
