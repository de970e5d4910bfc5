"""collabsim Fake Server Test Suite

Tests FakeServer bound to a single Client: binding, message exchange in
both directions, the connection policy toggles, kill/reconnect with
token checks, disconnect, and harness misuse errors.
"""
import sys
import os
import asyncio
import logging

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', '..'))

from collabsim.channel import Channel
from collabsim.rpc.client import Client, ConnectionOptions, Credentials, Status
from collabsim.rpc.errors import ConnectionClosed, ConnectionRefused, HarnessError
from collabsim.rpc.proto import Ack, ConnectionId, GetUsers, GetUsersResponse, LeaveChannel, Ping, User
from collabsim.testing import ACCESS_TOKEN, FakeServer, init_logger
from tests.mock.mock_logging import captured_logs
from tests.mock.mock_rpc import TIMEOUT, recv_within

init_logger()

USER_ID = 42

passed = failed = 0


def check(cond, name):
    global passed, failed
    if cond:
        passed += 1
        print(f"    OK {name}")
    else:
        failed += 1
        print(f"    FAIL {name}")
        raise AssertionError(name)


def run(coro):
    """Run an async coroutine."""
    return asyncio.run(coro)


async def bound_pair():
    client = Client(name=f"user-{USER_ID}")
    server = await FakeServer.for_client(USER_ID, client)
    return client, server


def collect(client, message_type) -> Channel:
    """Route every incoming message_type envelope into a channel."""
    received = Channel(name=message_type.__name__)
    client.subscribe(message_type, received.try_send)
    return received


# ── 1. Binding ──────────────────────────────────────────────────────

def test_for_client():
    print("\n1. for_client binds and connects...")

    async def _run():
        client, server = await bound_pair()
        return client, server, server.connection, server.connection_id()

    client, server, connection, connection_id = run(_run())
    check(client.status is Status.CONNECTED, f"Client status: {client.status}")
    check(client.user_id == USER_ID, "Client signed in as the requested user")
    check(client.credentials.access_token == ACCESS_TOKEN, "Client holds the fake token")
    check(connection is not None, "Server bound")
    check(connection.token == client.connection_token, "Stored token is the client's")
    check(connection_id == ConnectionId(0), f"First connection id: {connection_id}")


# ── 2. Messages ─────────────────────────────────────────────────────

def test_ping_scenario():
    print("\n2. Server pings, client replies...")

    async def _run():
        client, server = await bound_pair()
        pings = Channel()

        async def on_ping(envelope):
            pings.try_send(envelope)
            await client.respond(envelope.receipt(), Ack())

        client.subscribe(Ping, on_ping)
        ping_id = await server.send(Ping())
        observed = await recv_within(pings)
        ack = await asyncio.wait_for(server.receive(Ack), TIMEOUT)
        return ping_id, observed, ack

    ping_id, observed, ack = run(_run())
    check(isinstance(observed.payload, Ping), "Client observed the Ping")
    check(observed.message_id == ping_id, "Same message id on both ends")
    check(isinstance(ack.payload, Ack), "Server received the Ack")
    check(ack.responding_to == ping_id, "Ack answers the Ping")


def test_send_then_client_receives():
    print("\n3. send(m) reaches the client unchanged...")

    async def _run():
        client, server = await bound_pair()
        received = collect(client, LeaveChannel)
        for channel_id in (3, 1, 2):
            await server.send(LeaveChannel(channel_id=channel_id))
        return [await recv_within(received) for _ in range(3)]

    envelopes = run(_run())
    check([e.payload for e in envelopes] == [LeaveChannel(channel_id=i) for i in (3, 1, 2)], "Payloads equal, in order")


def test_client_request():
    print("\n4. Client request answered by the server...")

    async def _run():
        client, server = await bound_pair()
        request = asyncio.ensure_future(client.request(GetUsers(user_ids=[USER_ID])))
        env = await asyncio.wait_for(server.receive(GetUsers), TIMEOUT)
        await server.respond(env.receipt(), GetUsersResponse(users=[User(id=USER_ID, github_login="user")]))
        return env, await asyncio.wait_for(request, TIMEOUT)

    env, response = run(_run())
    check(env.payload.user_ids == [USER_ID], "Server saw the request")
    check(response.users[0].id == USER_ID, "Client got the response")


def test_receive_wrong_type():
    print("\n5. Unexpected message type...")

    async def _run():
        client, server = await bound_pair()
        await client.send(LeaveChannel(channel_id=1))
        try:
            await asyncio.wait_for(server.receive(Ack), TIMEOUT)
        except HarnessError as e:
            return str(e)
        return None

    error = run(_run())
    check(error == "fake server received unexpected message type: 'LeaveChannel'", f"HarnessError: {error}")
    check(issubclass(HarnessError, AssertionError), "HarnessError fails the test outright")


def test_receive_after_stream_end():
    print("\n6. receive on an ended stream...")

    async def _run():
        _client, server = await bound_pair()
        await server.peer.disconnect(server.connection_id())
        try:
            await asyncio.wait_for(server.receive(Ack), TIMEOUT)
        except ConnectionClosed as e:
            return str(e)
        return None

    error = run(_run())
    check(error == "other half hung up", f"ConnectionClosed: {error}")


# ── 7. Connection policy ────────────────────────────────────────────

def test_forbid_new_connections():
    print("\n7. forbid/allow new connections...")

    async def _run():
        client, server = await bound_pair()
        first_id = server.connection_id()

        server.forbid_new_connections()
        error = None
        try:
            await client.authenticate_and_connect()
        except ConnectionRefused as e:
            error = str(e)
        status_after_refusal = client.status

        server.allow_new_connections()
        await client.authenticate_and_connect()
        return error, status_after_refusal, client.status, first_id, server.connection_id(), server.connection.token

    error, refused_status, status, first_id, second_id, token = run(_run())
    check(error == "server is forbidding connections", f"Refused: {error}")
    check(refused_status is Status.CONNECTION_ERROR, "Client reports the failure")
    check(status is Status.CONNECTED, "Allowed again")
    check(second_id != first_id, "New connection gets a new id")


def test_kill_and_reconnect():
    print("\n8. kill_connection, then reconnect with the same token...")

    async def _run():
        client, server = await bound_pair()
        original_id = server.connection_id()
        original_kill = server.connection.kill

        await server.kill_connection()
        await asyncio.wait_for(client.wait_for_status(Status.CONNECTION_LOST), TIMEOUT)
        await client.reconnect()

        received = collect(client, LeaveChannel)
        await server.send(LeaveChannel(channel_id=5))
        env = await recv_within(received)
        return client, original_id, server.connection_id(), original_kill, server.connection.kill, env

    client, original_id, new_id, old_kill, new_kill, env = run(_run())
    check(old_kill.fired, "Old transport killed")
    check(new_kill is not old_kill and not new_kill.fired, "Fresh kill signal for the new transport")
    check(new_id == original_id, "ConnectionId preserved")
    check(client.status is Status.CONNECTED, "Client connected again")
    check(env.payload.channel_id == 5, "Messages flow after reconnect")


def test_reconnect_token_mismatch():
    print("\n9. Reconnect with a foreign token...")

    async def _run():
        client, server = await bound_pair()
        await server.kill_connection()
        opts = ConnectionOptions(
            user_id=USER_ID,
            access_token=ACCESS_TOKEN,
            is_reconnection=True,
            connection_token=client.connection_token ^ 1,
        )
        try:
            await server.connect(opts, server.executor)
        except ConnectionRefused as e:
            return str(e)
        return None

    error = run(_run())
    check(error == "cannot re-establish connection", f"Refused: {error}")


def test_forbid_reconnections():
    print("\n10. forbid_reconnections, kill, reconnect...")

    async def _run():
        client, server = await bound_pair()
        server.forbid_reconnections()
        await server.kill_connection()
        error = None
        try:
            await client.reconnect()
        except ConnectionRefused as e:
            error = str(e)
        status = client.status

        server.allow_reconnections()
        await client.reconnect()
        return error, status, client.status

    error, refused_status, status = run(_run())
    check(error == "server is forbidding reconnections", f"Refused: {error}")
    check(refused_status is Status.CONNECTION_ERROR, "Client reports the failure")
    check(status is Status.CONNECTED, "Reconnect works once allowed")


def test_disconnect_then_reconnect():
    print("\n11. disconnect, then reconnect with the original token...")

    async def _run():
        client, server = await bound_pair()
        await server.disconnect()
        await asyncio.wait_for(client.wait_for_status(Status.CONNECTION_LOST), TIMEOUT)
        error = None
        try:
            await client.reconnect()
        except ConnectionRefused as e:
            error = str(e)
        return error, server.connection

    error, connection = run(_run())
    check(error == "cannot re-establish connection", f"Refused: {error}")
    check(connection is None, "Server unbound")


# ── 12. Misuse ──────────────────────────────────────────────────────

def test_unbound_errors():
    print("\n12. Unbound server operations...")

    async def _run():
        server = FakeServer()
        errors = []
        try:
            server.connection_id()
        except HarnessError as e:
            errors.append(str(e))
        for coro_fn in (server.kill_connection, server.disconnect, lambda: server.send(Ping()),
                        lambda: server.receive(Ping)):
            try:
                await coro_fn()
            except HarnessError as e:
                errors.append(str(e))
        return errors

    errors = run(_run())
    check(errors == ["not connected"] * 5, f"All raise 'not connected': {errors}")



def test_refusals_logged():
    print("\n13. Refused connections are logged...")

    async def _run():
        client, server = await bound_pair()
        with captured_logs("collabsim.testing.fake_server") as records:
            server.forbid_new_connections()
            try:
                await client.authenticate_and_connect()
            except ConnectionRefused:
                pass
            server.forbid_reconnections()
            try:
                await client.reconnect()
            except ConnectionRefused:
                pass
            server.allow_reconnections()
            await server.disconnect()
            try:
                await client.reconnect()
            except ConnectionRefused:
                pass
        return [r for r in records if r.levelno == logging.WARNING]

    warnings = run(_run())
    check(len(warnings) == 3, f"One warning per refusal: {[r.getMessage() for r in warnings]}")
    check(all(f"client {USER_ID}" in r.getMessage() for r in warnings), "Warnings name the client")


def test_foreign_credentials_rejected():
    print("\n14. Connect hook rejects foreign credentials...")

    async def _run():
        client, server = await bound_pair()
        errors = []
        for credentials in (Credentials(7, ACCESS_TOKEN), Credentials(USER_ID, "stolen")):
            client.credentials = credentials
            try:
                await client.reconnect()
            except HarnessError as e:
                errors.append(str(e))
        return errors, client.status

    errors, status = run(_run())
    check(errors == ["unexpected user id 7", "unexpected access token 'stolen'"], f"HarnessErrors: {errors}")
    check(status is Status.CONNECTION_ERROR, "Client reports the failure")


if __name__ == "__main__":
    print("=" * 60)
    print("  collabsim Fake Server Tests")
    print("=" * 60)

    test_for_client()
    test_ping_scenario()
    test_send_then_client_receives()
    test_client_request()
    test_receive_wrong_type()
    test_receive_after_stream_end()
    test_forbid_new_connections()
    test_kill_and_reconnect()
    test_reconnect_token_mismatch()
    test_forbid_reconnections()
    test_disconnect_then_reconnect()
    test_unbound_errors()
    test_refusals_logged()
    test_foreign_credentials_rejected()

    print(f"\n{'=' * 60}")
    if failed == 0:
        print(f"  ALL {passed} TESTS PASSED!")
    else:
        print(f"  {passed} passed, {failed} FAILED")
    print("=" * 60)
    sys.exit(1 if failed else 0)
