from sqlmodel import Session, select, text

from escape_room.migrations import MIGRATIONS, Migration, run_migrations


def test_migrations_apply_once(engine):
    applied = run_migrations(engine)
    assert applied == [name for name, _ in MIGRATIONS]
    assert run_migrations(engine) == []

    with Session(engine) as s:
        names = [m.name for m in s.exec(select(Migration)).all()]
        assert sorted(names) == sorted(applied)
        indexes = {
            row[0] for row in s.execute(text("SELECT name FROM sqlite_master WHERE type = 'index'")).all()
        }
    assert {'idx_scores_ranking', 'idx_sessions_ends_at', 'idx_sessions_finished_at'} <= indexes
