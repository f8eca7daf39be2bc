import pytest

from cip60_indexer import connection
from tests.fakes import FakeSocket


@pytest.fixture
def fake_connect(monkeypatch):
    """Route websockets.connect to FakeSockets backed by an optional FakeNode."""

    class Connector:
        def __init__(self):
            self.node = None
            self.sockets = []
            self.fail = False

        async def __call__(self, url, **kwargs):
            if self.fail:
                raise OSError("connection refused")
            ws = FakeSocket(self.node)
            self.sockets.append(ws)
            return ws

    connector = Connector()
    monkeypatch.setattr(connection.websockets, "connect", connector)
    return connector
