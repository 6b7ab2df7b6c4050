from gacha import socketio
from gacha.services.dispatch import BRIDGE_NAMESPACE
from tests.factories import BRIDGE_TOKEN


def test_bridge_socket_rejects_bad_token(test_app):
    client = socketio.test_client(test_app, namespace=BRIDGE_NAMESPACE, auth={"token": "wrong"})
    assert not client.is_connected(BRIDGE_NAMESPACE)


def test_bridge_socket_receives_refresh_on_roll(test_app, roller, player):
    client = socketio.test_client(test_app, namespace=BRIDGE_NAMESPACE, auth={"token": BRIDGE_TOKEN})
    assert client.is_connected(BRIDGE_NAMESPACE)
    client.get_received(BRIDGE_NAMESPACE)

    roller.roll(player.id)
    events = [m["name"] for m in client.get_received(BRIDGE_NAMESPACE)]
    assert events == ["refresh_commands"]
    client.disconnect(namespace=BRIDGE_NAMESPACE)
