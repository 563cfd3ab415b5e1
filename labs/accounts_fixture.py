"""
accounts 테스트 테이블 관리
==========================

HOT/pruning 실습용 고정 테이블의 생명주기(create / reset / drop)와
row 생성, balance UPDATE를 담당합니다.

모든 함수는 호출자가 넘겨준 커서만 사용합니다. 전역 연결은 없습니다.
DDL/DML 오류는 그대로 전파되며 재시도하지 않습니다.

주의: 이전 lab들(lab01 등)도 같은 mvcc_lab DB에 accounts(name, balance)
테이블을 씁니다. reset_table()과 drop_table(), 그리고 tests/의 DB 테스트는
그 테이블을 DROP하고 이 실습용 스키마로 다시 만듭니다. 다른 lab을 다시
실행하려면 그 lab의 초기화 스크립트로 accounts를 복구하거나,
MVCC_LAB_DATABASE로 별도 DB를 지정하세요.
"""

TABLE_NAME = 'accounts'

# FILLFACTOR = 10: 한 페이지에 적은 수의 row만 INSERT되도록 해서
# 몇 번의 UPDATE만으로 pruning을 관찰할 수 있게 합니다.
# autovacuum은 꺼서 opportunistic pruning만 페이지를 바꾸도록 합니다.
CREATE_TABLE_SQL = """
    CREATE TABLE accounts (
        a_id            BIGSERIAL PRIMARY KEY,
        idempotency_key TEXT   NOT NULL,
        balance         BIGINT NOT NULL CHECK (balance >= 0)
    ) WITH (fillfactor = 10, autovacuum_enabled = false);
    CREATE UNIQUE INDEX idempotency_key_idx ON accounts (idempotency_key);
"""

DROP_TABLE_SQL = "DROP TABLE IF EXISTS accounts"


class NoSuchAccount(LookupError):
    """UPDATE 대상 a_id가 존재하지 않음"""

    def __init__(self, a_id):
        super().__init__(f"a_id={a_id} 인 account가 없습니다")
        self.a_id = a_id


def ensure_pageinspect(cur):
    cur.execute("CREATE EXTENSION IF NOT EXISTS pageinspect")


def table_exists(cur, name=TABLE_NAME):
    """pg_stat_user_tables에 해당 테이블이 있는지 확인"""
    cur.execute("SELECT 1 FROM pg_stat_user_tables WHERE relname = %s", (name,))
    return cur.fetchone() is not None


def create_table(cur):
    """테이블이 없을 때만 생성. 생성했으면 True"""
    if table_exists(cur):
        return False
    cur.execute(CREATE_TABLE_SQL)
    return True


def drop_table(cur):
    cur.execute(DROP_TABLE_SQL)


def reset_table(cur):
    """
    테이블을 DROP 후 다시 생성합니다.

    실험마다 빈 페이지 0에서 시작하기 위해 TRUNCATE 대신 재생성합니다.
    """
    cur.execute(DROP_TABLE_SQL + ";" + CREATE_TABLE_SQL)


def upsert_placeholder(cur, idempotency_key):
    """
    idempotency_key로 row를 하나 보장하고 a_id를 반환합니다.

    이미 있으면 새 튜플을 만들지 않고 기존 a_id를 돌려줍니다.
    ON CONFLICT DO NOTHING은 충돌 시 아무 row도 반환하지 않으므로
    그때만 SELECT로 기존 row를 읽습니다 (READ COMMITTED에서는 새 스냅샷).
    """
    cur.execute("""
        INSERT INTO accounts (idempotency_key, balance)
        VALUES (%s, 0)
        ON CONFLICT (idempotency_key) DO NOTHING
        RETURNING a_id
    """, (idempotency_key,))
    row = cur.fetchone()
    if row is not None:
        return row[0]

    cur.execute(
        "SELECT a_id FROM accounts WHERE idempotency_key = %s",
        (idempotency_key,),
    )
    return cur.fetchone()[0]


def set_balance(cur, a_id, balance):
    """balance를 덮어쓰고 영향받은 row 수를 반환. 0이면 NoSuchAccount"""
    cur.execute(
        "UPDATE accounts SET balance = %s WHERE a_id = %s",
        (balance, a_id),
    )
    if cur.rowcount == 0:
        raise NoSuchAccount(a_id)
    return cur.rowcount


def get_balance(cur, a_id):
    cur.execute("SELECT balance FROM accounts WHERE a_id = %s", (a_id,))
    row = cur.fetchone()
    if row is None:
        raise NoSuchAccount(a_id)
    return row[0]


def account_count(cur):
    cur.execute("SELECT COUNT(*) FROM accounts")
    return cur.fetchone()[0]
