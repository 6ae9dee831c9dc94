"""
Fixtures for tests that talk to the demo target service.

Two ways in:

- ``client``: Flask's in-process test client, for endpoint behaviour.
- ``live_server``: the same app served over real HTTP from a background
  thread, for load runs and for ``/chain``, which calls its peers over
  the network.

Both share one :class:`PinnedRandom`, so a test can force the outcome of
``/payment`` or ``/random_status`` and reset it afterwards.

Key Concepts Demonstrated:
- Session-scoped live server on an ephemeral port
- Seeded and pinnable randomness for deterministic assertions
- Per-test database setup/teardown
"""

from __future__ import annotations

import random
import threading
from collections.abc import Generator

import pytest
from faker import Faker
from werkzeug.serving import make_server

from target_app import create_app, db

fake = Faker()


class PinnedRandom(random.Random):
    """
    ``random.Random`` whose ``randrange`` and ``choice`` can be pinned.

    ``/payment`` and ``/health/payment-gateway`` draw their outcome with
    ``randrange(100)``, ``/random_status`` with ``choice``.
    """

    def __init__(self, seed: int = 1234):
        super().__init__(seed)
        self.roll: int | None = None
        self.pick = None

    def randrange(self, *args, **kwargs):
        if self.roll is not None:
            return self.roll
        return super().randrange(*args, **kwargs)

    def choice(self, seq):
        if self.pick is not None:
            return self.pick
        return super().choice(seq)

    def unpin(self) -> None:
        self.roll = None
        self.pick = None


@pytest.fixture(scope="session")
def target_rng() -> PinnedRandom:
    return PinnedRandom()


@pytest.fixture(scope="session")
def app(target_rng):
    """Demo target app with test config: in-memory DB and no artificial delays."""
    application = create_app("testing", rng=target_rng)
    yield application


@pytest.fixture
def pinned(target_rng) -> Generator[PinnedRandom, None, None]:
    """Hand a test the shared random source and unpin it afterwards."""
    yield target_rng
    target_rng.unpin()


@pytest.fixture(scope="function")
def client(app):
    with app.test_client() as test_client:
        yield test_client


@pytest.fixture(scope="function")
def db_session(app):
    """Fresh tables for each test."""
    with app.app_context():
        db.create_all()
        yield db
        db.session.rollback()
        db.drop_all()


@pytest.fixture(scope="session")
def live_server(app) -> Generator[str, None, None]:
    """
    Serve the target app over HTTP from a daemon thread.

    The port is chosen by the OS; ``/chain`` is pointed back at it so
    its fan-out stays inside this process.

    Yields:
        str: Base URL of the running server.
    """
    host = "127.0.0.1"
    server = make_server(host, 0, app, threaded=True)
    port = server.server_port

    app.config.update(
        TARGET_PORT=port,
        CHAIN_SELF_HOST=host,
        TARGET_ONE_HOST=host,
        TARGET_TWO_HOST=host,
    )

    server_thread = threading.Thread(target=server.serve_forever, daemon=True)
    server_thread.start()

    yield f"http://{host}:{port}"

    server.shutdown()
    server_thread.join(timeout=5)


@pytest.fixture
def peanuts_data() -> dict[str, str]:
    return {"name": fake.first_name(), "description": fake.sentence()}
