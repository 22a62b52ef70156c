# tests/conftest.py
import pytest

from tab_orchestra.client.store import JsonStore
from tab_orchestra.routing.route import Router
from tab_orchestra.server.context import Context

from fakes import FakeClock, FakeServerWS


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ctx(clock):
    context = Context(history_limit=100, clock=clock)
    context.router = Router(ctx=context)
    return context


@pytest.fixture
def connect(ctx):
    """Attach a fake socket to the relay context, returns the Connection."""
    def _connect(**kwargs):
        return ctx.attach(FakeServerWS(**kwargs))
    return _connect


@pytest.fixture
def store(tmp_path):
    return JsonStore(tmp_path / "state.json")
