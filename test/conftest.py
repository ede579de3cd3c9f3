import pytest

from tapegrad.backend import NumpyBackend
from tapegrad.config import EngineConfig
from tapegrad.engine import Engine, set_engine


@pytest.fixture(autouse=True)
def fresh_engine():
    """
    Give every test its own default engine on the numpy backend, so tapes
    and backend swaps never carry over from one test to the next.
    """
    engine = Engine(backend=NumpyBackend(), config=EngineConfig())
    previous = set_engine(engine)

    yield engine  # Run the test with this engine installed

    set_engine(previous)
