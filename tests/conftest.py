import psycopg2
import pytest

from accounts_fixture import drop_table, ensure_pageinspect
from lab_common import get_connection


class FakeCursor:
    """execute() 호출을 기록하고 미리 넣어둔 결과를 돌려주는 커서"""

    def __init__(self, fetchone=(), fetchall=(), rowcount=1):
        self.executed = []
        self._fetchone = list(fetchone)
        self._fetchall = list(fetchall)
        self.rowcount = rowcount
        self.closed = False

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def fetchone(self):
        return self._fetchone.pop(0)

    def fetchall(self):
        return self._fetchall.pop(0)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_cursor():
    return FakeCursor


@pytest.fixture
def conn():
    """autocommit 연결. 서버나 pageinspect가 없으면 skip"""
    try:
        connection = get_connection(autocommit=True)
    except psycopg2.OperationalError as e:
        pytest.skip(f"PostgreSQL에 연결할 수 없습니다: {e}")

    try:
        with connection.cursor() as cur:
            ensure_pageinspect(cur)
    except psycopg2.Error as e:
        connection.close()
        pytest.skip(f"pageinspect 확장을 사용할 수 없습니다: {e}")

    yield connection

    # mvcc_lab DB의 accounts를 실습용 스키마째로 지움 (accounts_fixture 참고)
    with connection.cursor() as cur:
        drop_table(cur)
    connection.close()


@pytest.fixture
def cur(conn):
    with conn.cursor() as c:
        yield c
