import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
import pytest

# Ensure project root is on sys.path so tests can import the `escape_room` package
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from sqlmodel import SQLModel  # noqa: E402
from escape_room import crud  # noqa: E402
from escape_room.init_db import create_db_engine  # noqa: E402


def setup_db(tmp_path, name='escape.db'):
	engine = create_db_engine(f'sqlite:///{tmp_path / name}', timeout_seconds=30)
	SQLModel.metadata.create_all(engine)
	crud.engine = engine
	return engine


@pytest.fixture()
def engine(tmp_path):
	eng = setup_db(tmp_path)
	yield eng
	crud.engine = None
	eng.dispose()


class FakeClock:
	def __init__(self):
		self.now = datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

	def __call__(self):
		return self.now

	def advance(self, seconds):
		self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture()
def clock(monkeypatch):
	# frozen server clock; advance() moves it forward
	c = FakeClock()
	monkeypatch.setattr(crud, 'utcnow', c)
	return c
