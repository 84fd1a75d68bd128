from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlmodel import Session, select

from escape_room import crud, models
from escape_room.errors import AlreadyRunning, InvalidInput, NotFound


def test_start_then_status_reports_full_duration(engine):
    with Session(engine) as s:
        gs = crud.start_session(s, 'Alpha', 600)
        assert gs.ends_at - gs.started_at == timedelta(seconds=600)

        status = crud.get_status(s, 'Alpha')
        assert 599 <= status.remaining_seconds <= 600
        assert status.is_over is False
        assert status.team == 'Alpha'


def test_status_after_countdown_runs_out(engine, clock):
    with Session(engine) as s:
        crud.start_session(s, 'Alpha', 10)
        clock.advance(11)
        status = crud.get_status(s, 'Alpha')
        assert status.remaining_seconds == 0
        assert status.is_over is True


def test_remaining_rounds_up_until_deadline(engine, clock):
    with Session(engine) as s:
        crud.start_session(s, 'Alpha', 10)
        clock.advance(9.5)
        assert crud.get_status(s, 'Alpha').remaining_seconds == 1
        clock.advance(0.5)
        assert crud.get_status(s, 'Alpha').is_over is True


def test_status_unknown_team(engine):
    with Session(engine) as s:
        with pytest.raises(NotFound):
            crud.get_status(s, 'Nobody')


@pytest.mark.parametrize('team,duration', [
    ('', 60),
    ('   ', 60),
    (None, 60),
    ('Alpha', 0),
    ('Alpha', -5),
    ('Alpha', True),
    ('x' * 65, 60),
    ('ß' * 40, 60),
    ('a/b', 60),
])
def test_start_rejects_bad_input(engine, team, duration):
    with Session(engine) as s:
        with pytest.raises(InvalidInput):
            crud.start_session(s, team, duration)
        assert s.exec(select(models.GameSession)).all() == []


def test_team_key_length_is_bounded(engine):
    name = 'ß' * 32
    assert len(crud.team_key(name)) == crud.MAX_TEAM_LENGTH
    with Session(engine) as s:
        crud.start_session(s, name, 60)
        gs = s.exec(select(models.GameSession)).one()
        assert len(gs.team_key) <= crud.MAX_TEAM_LENGTH
        assert crud.get_status(s, 'SS' * 32).team == name


def test_second_start_without_reset_is_rejected(engine, clock):
    with Session(engine) as s:
        first = crud.start_session(s, 'Alpha', 600)
        clock.advance(30)
        with pytest.raises(AlreadyRunning):
            crud.start_session(s, 'Alpha', 600)
        status = crud.get_status(s, 'Alpha')
        assert status.started_at == first.started_at


def test_expired_session_needs_reset(engine, clock):
    with Session(engine) as s:
        crud.start_session(s, 'Alpha', 10)
        clock.advance(60)
        with pytest.raises(AlreadyRunning):
            crud.start_session(s, 'Alpha', 10)

        revived = crud.start_session(s, 'Alpha', 300, reset=True)
        assert revived.started_at == clock.now
        status = crud.get_status(s, 'Alpha')
        assert status.remaining_seconds == 300
        assert status.is_over is False


def test_finished_session_can_be_restarted(engine, clock):
    with Session(engine) as s:
        crud.start_session(s, 'Alpha', 600)
        assert crud.mark_finished(s, 'Alpha', clock.now) is True
        s.commit()
        assert crud.get_status(s, 'Alpha').is_over is True

        crud.start_session(s, 'Alpha', 600)
        gs = crud.get_session_by_team(s, 'Alpha')
        s.refresh(gs)
        assert gs.finished_at is None


def test_team_names_are_case_insensitive(engine):
    with Session(engine) as s:
        crud.start_session(s, 'Alpha', 600)
        with pytest.raises(AlreadyRunning):
            crud.start_session(s, '  ALPHA ', 600)
        assert crud.get_status(s, 'alpha').team == 'Alpha'


def test_reset_then_status_is_not_found(engine):
    with Session(engine) as s:
        crud.start_session(s, 'Alpha', 600)
        assert crud.reset_session(s, 'Alpha') is True
        with pytest.raises(NotFound):
            crud.get_status(s, 'Alpha')


def test_reset_is_idempotent(engine):
    with Session(engine) as s:
        assert crud.reset_session(s, 'Ghost') is False
        assert crud.reset_session(s, 'Ghost') is False


def test_mark_finished_applies_once(engine, clock):
    with Session(engine) as s:
        crud.start_session(s, 'Alpha', 600)
        assert crud.mark_finished(s, 'Alpha', clock.now) is True
        assert crud.mark_finished(s, 'Alpha', clock.now) is False
        s.commit()
        assert crud.mark_finished(s, 'Missing', clock.now) is False


def test_concurrent_starts_produce_one_session(engine):
    def attempt(_):
        with Session(engine) as s:
            try:
                crud.start_session(s, 'Racers', 600)
                return 'started'
            except AlreadyRunning:
                return 'rejected'

    with ThreadPoolExecutor(max_workers=20) as pool:
        results = list(pool.map(attempt, range(20)))

    assert results.count('started') == 1
    assert results.count('rejected') == 19
    with Session(engine) as s:
        assert len(s.exec(select(models.GameSession)).all()) == 1
