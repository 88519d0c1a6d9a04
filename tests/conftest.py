import os
import tempfile
from pathlib import Path

# keep salonbook.main from creating ./salonbook.db in the working tree
os.environ.setdefault("DATABASE_URL", f"sqlite:///{Path(tempfile.gettempdir()) / 'salonbook_test.db'}")

import pytest

from helpers import make_session_factory


@pytest.fixture
def session_factory(tmp_path):
    return make_session_factory(tmp_path)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
