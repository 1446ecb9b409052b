from fastapi import FastAPI

from scrabble_server.main import create_app
from scrabble_server.managers.coordinator import ConnectionCoordinator
from scrabble_server.managers.registry import SessionRegistry
from scrabble_server.persistence.memory import MemoryGateway


def test_app_wires_socket_events():
    app = create_app(gateway=MemoryGateway())
    api = app.other_asgi_app
    assert isinstance(api, FastAPI)

    events = api.state.sio.handlers['/']
    for name in ('connect', 'disconnect', 'joinGame', 'playerAction', 'markMessagesSeen'):
        assert name in events


def test_app_uses_the_given_gateway():
    gateway = MemoryGateway()
    api = create_app(gateway=gateway).other_asgi_app
    assert isinstance(api.state.registry, SessionRegistry)
    assert isinstance(api.state.coordinator, ConnectionCoordinator)
    assert api.state.registry.gateway is gateway
    assert api.state.registry.count() == 0
