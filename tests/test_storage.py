"""Tests for the SQLite layer and small helpers."""

import pytest

from reflecto.domain import StoreUnavailable
from reflecto.storage import Database
from reflecto.utils import blank, clamp_page, mask_email


@pytest.fixture
def db(tmp_path):
    return Database(str(tmp_path / "store.db"))


def count_users(db):
    with db.read() as conn:
        return conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]


def test_transaction_commits(db):
    with db.transaction() as conn:
        conn.execute(
            "INSERT INTO users (id, email, password_hash, created_time) VALUES ('u1', 'a@b.com', 'x', 'now')"
        )
    assert count_users(db) == 1


def test_transaction_rolls_back_on_error(db):
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            conn.execute(
                "INSERT INTO users (id, email, password_hash, created_time) VALUES ('u1', 'a@b.com', 'x', 'now')"
            )
            raise RuntimeError("interrupted")
    assert count_users(db) == 0


def test_driver_errors_become_store_unavailable(db):
    with pytest.raises(StoreUnavailable) as exc:
        with db.transaction() as conn:
            conn.execute("SELECT * FROM no_such_table")
    assert "no_such_table" not in exc.value.message


def test_unopenable_path(tmp_path):
    with pytest.raises(StoreUnavailable):
        Database(str(tmp_path))


def test_ping(db):
    assert db.ping() is True


def test_apply_changes_skips_identical_values(db):
    with db.transaction() as conn:
        conn.execute(
            "INSERT INTO users (id, email, password_hash, created_time) VALUES ('u1', 'a@b.com', 'x', 'now')"
        )
        conn.execute(
            "INSERT INTO notebooks (id, user_id, title, created_at, updated_at) "
            "VALUES ('n1', 'u1', 'T', 'then', 'then')"
        )
        row = conn.execute("SELECT * FROM notebooks WHERE id = 'n1'").fetchone()
        assert db.apply_changes(conn, "notebooks", row, {"title": "T", "is_public": False}) is False
        assert db.apply_changes(conn, "notebooks", row, {"is_public": True}) is True
        with pytest.raises(ValueError):
            db.apply_changes(conn, "notebooks", row, {"user_id": "u2"})
    with db.read() as conn:
        row = conn.execute("SELECT is_public, updated_at FROM notebooks WHERE id = 'n1'").fetchone()
    # the ValueError rolled the whole transaction back
    assert row is None


@pytest.mark.parametrize("page,limit,expected", [
    (1, None, (1, 20)),
    (0, 10, (1, 10)),
    (-4, 500, (1, 100)),
    (3, 0, (3, 1)),
    (None, None, (1, 20)),
])
def test_clamp_page(page, limit, expected):
    assert clamp_page(page, limit, 20, 100) == expected


def test_mask_email():
    assert mask_email("alice@example.com") == "a***@example.com"
    assert mask_email("broken") == "***"
    assert mask_email(None) == "***"


def test_blank():
    assert blank(None) and blank("") and blank("  \n")
    assert not blank("x")
    assert not blank(0)
