import pytest

from splitchain.db import make_engine
from splitchain.models.ledger import Group, Participant
from splitchain.services.group_store import GroupStore
from splitchain.storage.local import LocalBackend
from tests.factories import ALICE


@pytest.fixture
def db_file(tmp_path):
    return str(tmp_path / "groups.sqlite")


@pytest.fixture
def backend(db_file):
    # polling disabled: tests call poll_once() themselves
    b = LocalBackend(make_engine(db_file), poll_interval=0)
    yield b
    b.close()


@pytest.fixture
def store(backend):
    return GroupStore(backend)


@pytest.fixture
def group():
    return Group(
        id="group-1",
        name="Lisbon trip",
        created_by=ALICE,
        created_at=1_700_000_000_000,
        participants=[Participant(address=ALICE, preferred_chains=[137])],
    )
