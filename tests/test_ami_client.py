"""Tests for AmiClient against an in-process AMI server."""

import asyncio
import contextlib

import pytest
import pytest_asyncio

from conftest import wait_for
from contacthub.manager import (
    ActionRejected,
    ActionTimeout,
    AmiClient,
    ConnectError,
    ConnectionUnavailable,
    ManagerSessionState,
)
from contacthub.manager.frames import encode_frame, read_frame


class FakeAmiServer:
    """Minimal Asterisk manager: banner, Login, Ping, Originate, events.

    ``silent`` action names are received but never answered.  With
    ``close_after_login`` the server accepts the login and hangs up at once.
    """

    def __init__(self, username="hub", secret="s3cret"):
        self.username = username
        self.secret = secret
        self.silent: set[str] = set()
        self.originate_error = ""
        self.close_after_login = False
        self.received: list[dict[str, str]] = []
        self.connections = 0
        self._writers: list[asyncio.StreamWriter] = []
        self._server = None
        self.port = 0

    async def start(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self):
        self.drop_clients()
        self._server.close()
        await self._server.wait_closed()

    def drop_clients(self):
        for writer in self._writers:
            writer.close()
        self._writers.clear()

    def send_event(self, fields):
        for writer in self._writers:
            writer.write(encode_frame(fields))

    def actions(self, name):
        return [a for a in self.received if a.get("action") == name]

    async def _handle(self, reader, writer):
        self.connections += 1
        self._writers.append(writer)
        writer.write(b"Asterisk Call Manager/7.0.3\r\n")
        try:
            while True:
                frame = await read_frame(reader)
                if frame is None:
                    break
                self.received.append(dict(frame.fields))
                reply = self._reply(frame)
                if reply is not None:
                    writer.write(encode_frame(reply))
                    await writer.drain()
                if self.close_after_login and frame.get("action") == "Login":
                    break
        except (ConnectionError, OSError):
            pass
        finally:
            if writer in self._writers:
                self._writers.remove(writer)
            writer.close()

    def _reply(self, frame):
        name = frame.get("action")
        if name in self.silent:
            return None
        base = {"ActionID": frame.action_id}
        if name == "Login":
            if frame.get("username") == self.username and frame.get("secret") == self.secret:
                return {"Response": "Success", **base, "Message": "Authentication accepted"}
            return {"Response": "Error", **base, "Message": "Authentication failed"}
        if name == "Ping":
            return {"Response": "Success", **base, "Ping": "Pong"}
        if name == "Originate":
            if self.originate_error:
                return {"Response": "Error", **base, "Message": self.originate_error}
            return {"Response": "Success", **base, "Message": "Originate successfully queued"}
        if name == "Logoff":
            return {"Response": "Goodbye", **base, "Message": "Thanks for all the fish."}
        return {"Response": "Error", **base, "Message": "Invalid/unknown command"}


@pytest_asyncio.fixture
async def server():
    srv = FakeAmiServer()
    await srv.start()
    yield srv
    await srv.stop()


def _client(server, **kwargs):
    options = {
        "connect_timeout": 1.0,
        "action_timeout": 1.0,
        "reconnect_initial_delay": 0.05,
        "reconnect_max_delay": 0.2,
    }
    options.update(kwargs)
    username = options.pop("username", "hub")
    secret = options.pop("secret", "s3cret")
    return AmiClient("127.0.0.1", server.port, username, secret, **options)


# ── Connection and login ───────────────────────────────────────────


class TestConnect:
    async def test_login_authenticates(self, server):
        client = _client(server)
        await client.connect()
        try:
            assert client.state is ManagerSessionState.AUTHENTICATED
            assert client.banner.startswith("Asterisk Call Manager")
            login = server.actions("Login")[0]
            assert login["username"] == "hub"
            assert login["actionid"]
        finally:
            await client.close()
        assert client.state is ManagerSessionState.DISCONNECTED

    async def test_rejected_login_raises_connect_error(self, server):
        client = _client(server, secret="wrong")
        with pytest.raises(ConnectError, match="login rejected"):
            await client.connect()
        assert client.state is ManagerSessionState.DISCONNECTED

    async def test_unreachable_host_raises_connect_error(self):
        closed = FakeAmiServer()
        await closed.start()
        await closed.stop()
        client = AmiClient("127.0.0.1", closed.port, "hub", "s3cret", connect_timeout=0.5)
        with pytest.raises(ConnectError):
            await client.connect()
        assert client.state is ManagerSessionState.DISCONNECTED

    async def test_hangup_right_after_login_leaves_link_disconnected(self, server):
        server.close_after_login = True
        client = _client(server)
        try:
            with contextlib.suppress(ConnectError):
                await client.connect()
            await wait_for(lambda: client.state is ManagerSessionState.DISCONNECTED)
            with pytest.raises(ConnectionUnavailable):
                await client.send_action({"Action": "Ping"})
        finally:
            await client.close()

    async def test_connect_when_already_authenticated_is_a_no_op(self, server):
        client = _client(server)
        await client.connect()
        try:
            await client.connect()
            assert server.connections == 1
            assert client.connect_count == 1
        finally:
            await client.close()

    async def test_send_action_before_connect_is_unavailable(self, server):
        client = _client(server)
        with pytest.raises(ConnectionUnavailable):
            await client.send_action({"Action": "Ping"})
        assert server.received == []


# ── Actions ────────────────────────────────────────────────────────


class TestActions:
    async def test_response_correlated_by_action_id(self, server):
        client = _client(server)
        await client.connect()
        try:
            response = await client.send_action({"Action": "Originate", "Channel": "PJSIP/1001"})
            assert response.is_success
            assert response.message == "Originate successfully queued"
            assert response.action_id == server.actions("Originate")[0]["actionid"]
        finally:
            await client.close()

    async def test_concurrent_actions_get_their_own_responses(self, server):
        client = _client(server)
        await client.connect()
        try:
            responses = await asyncio.gather(
                *(client.send_action({"Action": "Ping"}) for _ in range(5))
            )
            ids = [r.action_id for r in responses]
            assert len(set(ids)) == 5
            assert client.pending_count == 0
        finally:
            await client.close()

    async def test_error_response_raises_action_rejected(self, server):
        server.originate_error = "Extension does not exist."
        client = _client(server)
        await client.connect()
        try:
            with pytest.raises(ActionRejected) as exc_info:
                await client.send_action({"Action": "Originate"})
            assert exc_info.value.reason == "Extension does not exist."
        finally:
            await client.close()

    async def test_unanswered_action_times_out(self, server):
        server.silent.add("Originate")
        client = _client(server)
        await client.connect()
        try:
            with pytest.raises(ActionTimeout) as exc_info:
                await client.send_action({"Action": "Originate"}, timeout=0.1)
            assert exc_info.value.action == "Originate"
            assert client.pending_count == 0
            # the link itself is still usable
            assert (await client.send_action({"Action": "Ping"})).is_success
        finally:
            await client.close()

    async def test_in_flight_action_times_out_after_transport_loss(self, server):
        server.silent.add("Originate")
        client = _client(server)
        await client.connect()
        try:
            in_flight = asyncio.create_task(
                client.send_action({"Action": "Originate"}, timeout=0.5)
            )
            await wait_for(lambda: len(server.actions("Originate")) == 1)
            server.drop_clients()
            await wait_for(lambda: client.state is ManagerSessionState.DISCONNECTED)
            assert client.pending_count == 1

            with pytest.raises(ActionTimeout) as exc_info:
                await in_flight
            assert exc_info.value.action == "Originate"
            assert client.pending_count == 0
        finally:
            await client.close()

    async def test_unmatched_response_is_dropped(self, server):
        client = _client(server)
        await client.connect()
        try:
            server.send_event({"Response": "Success", "ActionID": "nobody-1"})
            assert (await client.send_action({"Action": "Ping"})).is_success
        finally:
            await client.close()


# ── Events ─────────────────────────────────────────────────────────


class TestEvents:
    async def test_events_delivered_to_every_subscriber(self, server):
        client = _client(server)
        await client.connect()
        first = client.subscribe_events()
        second = client.subscribe_events()
        try:
            server.send_event({"Event": "Newchannel", "CallerIDNum": "0612345678"})
            a = await asyncio.wait_for(first.__anext__(), 1.0)
            b = await asyncio.wait_for(second.__anext__(), 1.0)
            assert a.get("calleridnum") == b.get("calleridnum") == "0612345678"
        finally:
            await client.close()

    async def test_events_keep_arrival_order(self, server):
        client = _client(server)
        await client.connect()
        sub = client.subscribe_events()
        try:
            for n in range(3):
                server.send_event({"Event": "Newchannel", "CallerIDNum": str(n)})
            got = [(await asyncio.wait_for(sub.__anext__(), 1.0)).get("calleridnum")
                   for _ in range(3)]
            assert got == ["0", "1", "2"]
        finally:
            await client.close()

    async def test_subscription_ends_when_transport_lost(self, server):
        client = _client(server)
        await client.connect()
        sub = client.subscribe_events()
        server.drop_clients()

        frames = [frame async for frame in sub]
        assert frames == []
        assert client.state is ManagerSessionState.DISCONNECTED
        await client.close()

    async def test_events_sent_before_loss_are_all_delivered(self, server):
        client = _client(server)
        await client.connect()
        sub = client.subscribe_events()
        for n in range(5):
            server.send_event({"Event": "Newchannel", "CallerIDNum": str(n)})
        server.drop_clients()

        async def drain():
            return [frame.get("calleridnum") async for frame in sub]

        assert await asyncio.wait_for(drain(), 1.0) == ["0", "1", "2", "3", "4"]
        assert sub.ended
        await client.close()

    async def test_closed_subscription_stops_receiving(self, server):
        client = _client(server)
        await client.connect()
        sub = client.subscribe_events()
        sub.close()
        try:
            server.send_event({"Event": "Newchannel", "CallerIDNum": "1"})
            await client.send_action({"Action": "Ping"})
            assert sub._queue.empty()
        finally:
            await client.close()


# ── Supervision ────────────────────────────────────────────────────


class TestSupervisor:
    async def test_reconnects_after_transport_loss(self, server):
        client = _client(server)
        client.start()
        try:
            await wait_for(lambda: client.state is ManagerSessionState.AUTHENTICATED)
            server.drop_clients()
            await wait_for(lambda: client.connect_count == 2)
            assert client.state is ManagerSessionState.AUTHENTICATED
            assert len(server.actions("Login")) == 2
        finally:
            await client.close()

    async def test_action_ids_unique_across_reconnects(self, server):
        client = _client(server)
        client.start()
        try:
            await wait_for(lambda: client.state is ManagerSessionState.AUTHENTICATED)
            await client.send_action({"Action": "Ping"})
            server.drop_clients()
            await wait_for(lambda: client.connect_count == 2)
            await client.send_action({"Action": "Ping"})
            ids = [a["actionid"] for a in server.received]
            assert len(ids) == len(set(ids))
        finally:
            await client.close()

    async def test_retries_until_login_accepted(self, server):
        server.secret = "rotated"
        client = _client(server)
        client.start()
        try:
            await wait_for(lambda: len(server.actions("Login")) >= 2)
            assert client.state is not ManagerSessionState.AUTHENTICATED
            server.secret = "s3cret"
            await wait_for(lambda: client.state is ManagerSessionState.AUTHENTICATED)
        finally:
            await client.close()

    async def test_keeps_retrying_when_server_hangs_up_after_login(self, server):
        server.close_after_login = True
        client = _client(server)
        client.start()
        try:
            await wait_for(lambda: server.connections >= 3)
            assert len(server.actions("Login")) >= 3
        finally:
            await client.close()

    async def test_keepalive_sends_ping(self, server):
        client = _client(server, keepalive_interval=0.05)
        client.start()
        try:
            await wait_for(lambda: len(server.actions("Ping")) >= 2)
        finally:
            await client.close()

    async def test_close_sends_logoff_and_stops_reconnecting(self, server):
        client = _client(server)
        client.start()
        await wait_for(lambda: client.state is ManagerSessionState.AUTHENTICATED)
        await client.close()
        await wait_for(lambda: len(server.actions("Logoff")) == 1)
        await asyncio.sleep(0.2)
        assert server.connections == 1
        assert client.state is ManagerSessionState.DISCONNECTED
