import pytest

from fakeserver import FakeServer
from xrestsync import APIClient, EnvironSettings


@pytest.fixture(autouse=True)
def empty_environ():
    # Keep whatever REST_API_* variables the developer has set out of the tests.
    with EnvironSettings(environ={}):
        yield


@pytest.fixture
def server() -> FakeServer:
    return FakeServer({
        "1": {"id": 1, "first": "Foo", "last": "Bar"},
        "2": {"id": 2, "first": "Foo", "last": "Baz"},
        "3": {"id": 3, "first": "Foo", "last": "Bat"},
    })


@pytest.fixture
def make_client(server):
    clients = []

    def make(**kwargs) -> APIClient:
        kwargs.setdefault("uri", "http://fake.test")
        client = APIClient(transport=server.transport(), **kwargs)
        clients.append(client)
        return client

    yield make

    for c in clients:
        c.close()


@pytest.fixture
def client(make_client) -> APIClient:
    return make_client()
