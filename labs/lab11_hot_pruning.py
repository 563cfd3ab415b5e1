#!/usr/bin/env python3
"""
Lab 11: HOT UPDATE와 Page Pruning 실습
=====================================

학습 목표:
- 같은 row를 반복 UPDATE할 때 HOT chain이 한 페이지 안에 쌓이는 것 확인
- 페이지가 가득 차면 opportunistic pruning이 line pointer를 정리하는 것 확인
- 오래 열린 트랜잭션(스냅샷)이 pruning을 막는 것 확인

필요 확장:
- pageinspect (heap_page_items, get_raw_page)

실행 방법:
    python lab11_hot_pruning.py
"""

import os
import sys
from collections import namedtuple

import psycopg2

# matplotlib 설정
import matplotlib
matplotlib.use('Agg')  # GUI 없이 파일로 저장
import matplotlib.pyplot as plt
import numpy as np

from accounts_fixture import (
    TABLE_NAME,
    NoSuchAccount,
    ensure_pageinspect,
    get_balance,
    reset_table,
    set_balance,
    upsert_placeholder,
)
from lab_common import get_connection, print_result, print_section, wait_for_user
from page_inspect import (
    LP_DEAD,
    LP_NORMAL,
    LP_REDIRECT,
    LP_UNUSED,
    classify_by_status,
    describe_counts,
    page_count,
    print_page,
    read_page_tuples,
    status_name,
)

plt.rcParams['font.family'] = 'DejaVu Sans'
plt.rcParams['axes.unicode_minus'] = False

# 그래프 저장 디렉토리
GRAPH_DIR = os.path.join(os.path.dirname(__file__), 'graphs')

IDEMPOTENCY_KEY = '2y'

# 8kB 페이지 + FILLFACTOR 10 에서 관찰된 값.
# 환경(버전, 블록 크기)에 따라 다르므로 main()은 measure_page_capacity()로 다시 잰다.
DEFAULT_CAPACITY = 16


# =============================================================================
# 실험 단계 정의
# =============================================================================

Reset = namedtuple('Reset', ['idempotency_key'])
Update = namedtuple('Update', ['balances'])
PinSnapshot = namedtuple('PinSnapshot', [])
ReleaseSnapshot = namedtuple('ReleaseSnapshot', [])
Touch = namedtuple('Touch', [])
Expect = namedtuple('Expect', ['counts', 'description'])
ExpectPages = namedtuple('ExpectPages', ['pages'])
Pause = namedtuple('Pause', ['message'])


class ExpectationFailed(AssertionError):
    """관찰한 페이지 상태가 기대값과 다름"""


class CapacityNotFound(RuntimeError):
    """max_updates 안에 pruning이 관찰되지 않음"""


class Experiment:
    """
    단계 목록을 순서대로 실행합니다.

    conn은 autocommit 연결이어야 합니다 (UPDATE마다 커밋).
    PinSnapshot은 connect()로 별도 세션을 열어 REPEATABLE READ 스냅샷을
    잡고, ReleaseSnapshot에서 커밋 후 닫습니다.
    """

    def __init__(self, conn, connect=get_connection, page_number=0,
                 interactive=False, verbose=True):
        self.conn = conn
        self.cur = conn.cursor()
        self.connect = connect
        self.page_number = page_number
        self.interactive = interactive
        self.verbose = verbose
        self.a_id = None
        self.pinned_conn = None
        self.pinned_cur = None
        self.update_count = 0

    def run(self, steps):
        try:
            for step in steps:
                self.apply(step)
        finally:
            self.close()

    def apply(self, step):
        handler = getattr(self, '_' + type(step).__name__.lower(), None)
        if handler is None:
            raise TypeError(f"알 수 없는 실험 단계: {step!r}")
        handler(step)

    def close(self):
        if self.pinned_conn is not None:
            self.pinned_cur.close()
            self.pinned_conn.close()
            self.pinned_conn = None
            self.pinned_cur = None
        self.cur.close()

    def _log(self, message):
        if self.verbose:
            print(message)

    def _reset(self, step):
        reset_table(self.cur)
        self.a_id = upsert_placeholder(self.cur, step.idempotency_key)
        self.update_count = 0
        self._log(f"\n[테이블 초기화] idempotency_key='{step.idempotency_key}' → a_id={self.a_id}")

    def _update(self, step):
        balances = list(step.balances)
        for balance in balances:
            set_balance(self.cur, self.a_id, balance)
        self.update_count += len(balances)
        if balances:
            self._log(f"[UPDATE] balance {balances[0]}..{balances[-1]} ({len(balances)}회, 누적 {self.update_count}회)")

    def _pinsnapshot(self, step):
        if self.pinned_conn is not None:
            raise RuntimeError("이미 스냅샷을 잡고 있는 세션이 있습니다")
        self.pinned_conn = self.connect(autocommit=True)
        self.pinned_cur = self.pinned_conn.cursor()
        self.pinned_cur.execute("BEGIN ISOLATION LEVEL REPEATABLE READ")
        self.pinned_cur.execute(f"SELECT COUNT(*) FROM {TABLE_NAME}")
        seen = self.pinned_cur.fetchone()[0]
        self._log(f"[세션 B] REPEATABLE READ 트랜잭션 시작, {seen}건 조회 (스냅샷 고정)")

    def _releasesnapshot(self, step):
        if self.pinned_conn is None:
            raise RuntimeError("스냅샷을 잡고 있는 세션이 없습니다")
        self.pinned_cur.execute("COMMIT")
        self.pinned_cur.close()
        self.pinned_conn.close()
        self.pinned_conn = None
        self.pinned_cur = None
        self._log("[세션 B] COMMIT (스냅샷 해제)")

    def _touch(self, step):
        # index scan으로 heap 페이지를 읽으면 pruning 기회가 생김
        balance = get_balance(self.cur, self.a_id)
        self._log(f"[SELECT] a_id={self.a_id} balance={balance}")

    def _expect(self, step):
        records = read_page_tuples(self.cur, TABLE_NAME, self.page_number)
        if self.verbose:
            print_page(records, step.description or f"페이지 {self.page_number}")
        observed = classify_by_status(records)
        expected = dict(sorted(step.counts.items()))
        if observed != expected:
            raise ExpectationFailed(
                f"{step.description or '페이지 상태'}: "
                f"기대 {describe_counts(expected)} / 관찰 {describe_counts(observed)}"
            )

    def _expectpages(self, step):
        pages = page_count(self.cur, TABLE_NAME)
        self._log(f"[ANALYZE] {TABLE_NAME} relpages = {pages}")
        if pages != step.pages:
            raise ExpectationFailed(f"페이지 수: 기대 {step.pages} / 관찰 {pages}")

    def _pause(self, step):
        if self.interactive:
            wait_for_user(step.message)


# =============================================================================
# 시나리오 정의
# =============================================================================

def scenario_a_steps(capacity=DEFAULT_CAPACITY):
    """
    시나리오 A: HOT chain 쌓기
    -------------------------
    INSERT 1번 + UPDATE (capacity-1)번 → 모든 버전이 페이지 0에 LP_NORMAL로 남음
    """
    return [
        Reset(IDEMPOTENCY_KEY),
        Update(list(range(1, capacity))),
        Expect({LP_NORMAL: capacity}, f"UPDATE {capacity - 1}회 후 페이지 0"),
    ]


def scenario_b_steps(capacity=DEFAULT_CAPACITY):
    """
    시나리오 B: 페이지가 가득 찬 뒤 UPDATE 한 번 더
    ---------------------------------------------
    UPDATE가 페이지를 읽을 때 pruning 발생:
    첫 슬롯은 최신 버전으로 redirect, 나머지 옛 버전은 LP_UNUSED,
    새 버전은 비워진 슬롯 하나를 재사용합니다.
    """
    return scenario_a_steps(capacity) + [
        Pause("pruning을 일으킬 UPDATE를 실행하려면 Enter를 누르세요..."),
        Update([capacity + 1]),
        Expect(
            {LP_UNUSED: capacity - 3, LP_NORMAL: 2, LP_REDIRECT: 1},
            "pruning 후 페이지 0",
        ),
        ExpectPages(1),
    ]


def scenario_c_steps(capacity=DEFAULT_CAPACITY):
    """
    시나리오 C: 오래 열린 트랜잭션이 pruning을 막는다
    ------------------------------------------------
    세션 B의 스냅샷이 옛 버전을 볼 수 있으므로 pruning이 아무것도 지우지 못하고
    새 버전이 하나 더 쌓입니다. 세션 B가 커밋한 뒤 읽기가 일어나야 정리됩니다.
    """
    return [
        Reset(IDEMPOTENCY_KEY),
        PinSnapshot(),
        Update(list(range(1, capacity))),
        Update([capacity + 1]),
        Expect({LP_NORMAL: capacity + 1}, "세션 B가 열려 있는 동안 페이지 0"),
        Pause("세션 B를 COMMIT하려면 Enter를 누르세요..."),
        ReleaseSnapshot(),
        Touch(),
        Expect(
            {LP_UNUSED: capacity - 1, LP_NORMAL: 1, LP_REDIRECT: 1},
            "세션 B COMMIT + SELECT 후 페이지 0",
        ),
        ExpectPages(1),
    ]


# =============================================================================
# 페이지 용량 측정
# =============================================================================

def measure_page_capacity(conn, max_updates=1000, page_number=0):
    """
    첫 pruning이 관찰될 때까지 UPDATE를 반복합니다.

    반환값: (capacity, history)
    - capacity: pruning 직전 페이지의 line pointer 수
    - history: UPDATE 0회부터 매 단계의 classify_by_status 결과
    """
    cur = conn.cursor()
    try:
        reset_table(cur)
        a_id = upsert_placeholder(cur, IDEMPOTENCY_KEY)
        history = [classify_by_status(read_page_tuples(cur, TABLE_NAME, page_number))]

        for balance in range(1, max_updates + 1):
            before = sum(history[-1].values())
            set_balance(cur, a_id, balance)
            counts = classify_by_status(read_page_tuples(cur, TABLE_NAME, page_number))
            history.append(counts)
            if any(counts.get(flag) for flag in (LP_UNUSED, LP_REDIRECT, LP_DEAD)):
                return before, history
    finally:
        cur.close()

    raise CapacityNotFound(f"UPDATE {max_updates}회 안에 pruning이 일어나지 않았습니다")


def save_graph(fig, filename):
    """그래프를 파일로 저장"""
    os.makedirs(GRAPH_DIR, exist_ok=True)
    filepath = os.path.join(GRAPH_DIR, filename)
    fig.savefig(filepath, dpi=150, bbox_inches='tight', facecolor='white')
    plt.close(fig)
    print(f"\n[Graph Saved] {filepath}")
    return filepath


def plot_timeline(history, filename='hot_pruning_timeline.png'):
    """UPDATE 횟수별 line pointer 상태를 누적 막대그래프로 저장"""
    flags = [LP_UNUSED, LP_NORMAL, LP_REDIRECT, LP_DEAD]
    colors = ['#bdc3c7', '#3498db', '#e67e22', '#e74c3c']

    fig, ax = plt.subplots(figsize=(12, 6))
    x = np.arange(len(history))
    bottom = np.zeros(len(history))

    for flag, color in zip(flags, colors):
        values = np.array([counts.get(flag, 0) for counts in history])
        if not values.any():
            continue
        ax.bar(x, values, bottom=bottom, label=status_name(flag), color=color)
        bottom += values

    ax.set_xlabel('Updates', fontsize=12)
    ax.set_ylabel('Line pointers on page 0', fontsize=12)
    ax.set_title('HOT chain growth and pruning', fontsize=14, fontweight='bold')
    ax.set_xticks(x)
    ax.legend()

    plt.tight_layout()
    return save_graph(fig, filename)


# =============================================================================
# 실행
# =============================================================================

def show_accounts(conn):
    cur = conn.cursor()
    try:
        cur.execute(f"""
            SELECT xmin, xmax, ctid, a_id, idempotency_key, balance
            FROM {TABLE_NAME}
            ORDER BY a_id
        """)
        print_result(cur, "일반 SELECT로 보이는 데이터 (최신 버전만)")
    finally:
        cur.close()


def run_measurement(conn):
    print_section("측정: 페이지 0이 pruning 전에 담는 line pointer 수")
    capacity, history = measure_page_capacity(conn)
    for updates, counts in enumerate(history):
        print(f"  UPDATE {updates:3d}회: {describe_counts(counts)}")
    print(f"\n  → pruning 직전 line pointer 수: {capacity}")
    plot_timeline(history)
    return capacity


def run_scenario_ab(conn, capacity, interactive=True):
    print_section("시나리오 A/B: HOT chain과 opportunistic pruning")
    Experiment(conn, interactive=interactive).run(scenario_b_steps(capacity))
    show_accounts(conn)
    print("""
    분석:
    - 인덱스 컬럼(a_id, idempotency_key)을 바꾸지 않으므로 모든 UPDATE가 HOT
    - 새 버전은 같은 페이지에 쌓이고 옛 버전은 t_xmax가 설정됨
    - 여유 공간이 fillfactor 기준보다 작아지면 페이지를 읽는 순간 pruning
    - HOT chain의 머리(lp 1)는 인덱스가 가리키므로 LP_REDIRECT로 남음
    """)


def run_scenario_c(conn, capacity, interactive=True):
    print_section("시나리오 C: 긴 트랜잭션이 pruning을 막는다")
    Experiment(conn, interactive=interactive).run(scenario_c_steps(capacity))
    show_accounts(conn)
    print("""
    분석:
    - 세션 B의 스냅샷이 옛 버전을 볼 수 있는 동안 pruning은 아무것도 지우지 못함
    - 세션 B가 끝난 뒤 다음 읽기에서 chain 전체가 정리됨
    - 운영 환경에서 오래 열린 트랜잭션이 bloat을 만드는 이유
    """)


def main():
    print("""
╔══════════════════════════════════════════════════════════════════╗
║          Lab 11: HOT UPDATE와 Page Pruning                       ║
║          Heap-Only Tuple chain, opportunistic pruning            ║
╚══════════════════════════════════════════════════════════════════╝

시나리오 목록:
  1. 페이지 용량 측정 (pruning 직전 line pointer 수)
  2. 시나리오 A/B: HOT chain 쌓기와 pruning
  3. 시나리오 C: 긴 트랜잭션이 pruning을 막는다

실행할 시나리오 번호를 입력하세요 (1-3, 또는 'all'):
    """)

    choice = input("선택: ").strip().lower()
    if choice not in ('1', '2', '3', 'all'):
        print("잘못된 선택입니다. 1-3 또는 'all'을 입력하세요.")
        return

    conn = None
    try:
        conn = get_connection(autocommit=True)
        cur = conn.cursor()
        ensure_pageinspect(cur)
        cur.close()

        capacity = run_measurement(conn)
        if choice in ('2', 'all'):
            wait_for_user()
            run_scenario_ab(conn, capacity)
        if choice in ('3', 'all'):
            wait_for_user()
            run_scenario_c(conn, capacity)

        print_section("Lab 11 완료!")
        print("""
    학습 정리:
    1. 인덱스 컬럼이 그대로면 UPDATE는 HOT: 새 버전이 같은 페이지에 쌓임
    2. 페이지 여유 공간이 부족해지면 읽기 시점에 pruning이 옛 버전을 정리
    3. pruning 후 chain의 머리는 LP_REDIRECT, 옛 버전 슬롯은 LP_UNUSED
    4. 옛 버전을 볼 수 있는 스냅샷이 남아 있으면 pruning이 막힘
        """)

    except psycopg2.OperationalError as e:
        print(f"\n오류: 데이터베이스에 연결할 수 없습니다.")
        print(f"Docker가 실행 중인지 확인하세요: docker-compose up -d")
        print(f"상세 오류: {e}")
        sys.exit(1)
    except (psycopg2.Error, ExpectationFailed, CapacityNotFound, NoSuchAccount) as e:
        print(f"\n오류: {e}")
        print("현재 페이지 상태를 직접 확인해 보세요:")
        print(f"    SELECT * FROM heap_page_items(get_raw_page('{TABLE_NAME}', 0));")
        sys.exit(1)
    finally:
        if conn is not None:
            conn.close()


if __name__ == '__main__':
    main()
