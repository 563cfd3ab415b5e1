from psycopg2 import errors
import pytest

from accounts_fixture import (
    TABLE_NAME,
    NoSuchAccount,
    account_count,
    create_table,
    drop_table,
    get_balance,
    reset_table,
    set_balance,
    table_exists,
    upsert_placeholder,
)
from page_inspect import read_page_tuples


def test_upsert_returns_inserted_id(fake_cursor):
    cur = fake_cursor(fetchone=[(7,)])
    assert upsert_placeholder(cur, '2y') == 7
    assert len(cur.executed) == 1
    assert 'ON CONFLICT (idempotency_key) DO NOTHING' in cur.executed[0][0]


def test_upsert_falls_back_to_existing_row(fake_cursor):
    cur = fake_cursor(fetchone=[None, (7,)])
    assert upsert_placeholder(cur, '2y') == 7
    assert cur.executed[1] == (
        "SELECT a_id FROM accounts WHERE idempotency_key = %s",
        ('2y',),
    )


def test_set_balance_zero_rows_raises(fake_cursor):
    cur = fake_cursor(rowcount=0)
    with pytest.raises(NoSuchAccount) as exc_info:
        set_balance(cur, 42, 10)
    assert exc_info.value.a_id == 42


def test_set_balance_returns_rowcount(fake_cursor):
    cur = fake_cursor(rowcount=1)
    assert set_balance(cur, 1, 10) == 1
    assert cur.executed[0][1] == (10, 1)


def test_reset_replaces_accounts_with_fixture_schema(fake_cursor):
    cur = fake_cursor()
    reset_table(cur)

    assert len(cur.executed) == 1
    batch = cur.executed[0][0]
    assert batch.index("DROP TABLE IF EXISTS accounts") < batch.index("CREATE TABLE accounts")
    assert "idempotency_key TEXT   NOT NULL" in batch
    assert "fillfactor = 10" in batch


# =============================================================================
# 실제 DB
# =============================================================================

def test_reset_leaves_empty_existing_table(cur):
    reset_table(cur)
    upsert_placeholder(cur, 'a')
    upsert_placeholder(cur, 'b')

    reset_table(cur)
    assert table_exists(cur)
    assert account_count(cur) == 0


def test_lifecycle(cur):
    drop_table(cur)
    assert not table_exists(cur)
    assert create_table(cur) is True
    assert create_table(cur) is False
    assert table_exists(cur)
    drop_table(cur)
    assert not table_exists(cur)


def test_upsert_is_idempotent(cur):
    reset_table(cur)
    first = upsert_placeholder(cur, '2y')
    second = upsert_placeholder(cur, '2y')

    assert first == second
    assert account_count(cur) == 1
    assert get_balance(cur, first) == 0


def test_upsert_existing_key_adds_no_tuple(cur):
    reset_table(cur)
    upsert_placeholder(cur, '2y')
    upsert_placeholder(cur, '2y')
    assert len(read_page_tuples(cur, TABLE_NAME, 0)) == 1


def test_distinct_keys_get_distinct_ids(cur):
    reset_table(cur)
    ids = {upsert_placeholder(cur, key) for key in ('a', 'b', 'c')}
    assert len(ids) == 3


def test_set_balance(cur):
    reset_table(cur)
    a_id = upsert_placeholder(cur, '2y')
    assert set_balance(cur, a_id, 15) == 1
    assert get_balance(cur, a_id) == 15


def test_set_balance_missing_row(cur):
    reset_table(cur)
    with pytest.raises(NoSuchAccount):
        set_balance(cur, 999, 1)


def test_negative_balance_rejected(cur):
    reset_table(cur)
    a_id = upsert_placeholder(cur, '2y')
    with pytest.raises(errors.CheckViolation):
        set_balance(cur, a_id, -1)
