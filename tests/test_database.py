from sqlalchemy import text

from database import build_engine


def test_sqlite_file_engine_uses_wal(tmp_path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'finance.db'}")

    with engine.connect() as conn:
        mode = conn.execute(text("PRAGMA journal_mode")).scalar()

    assert mode == "wal"
    engine.dispose()
