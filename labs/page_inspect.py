"""
pageinspect 기반 heap 페이지 관찰 도구
=====================================

heap_page_items(get_raw_page(...))로 line pointer 상태를 읽고
lp_flags 별 개수로 분류합니다.

lp_flags 값:
    0 = LP_UNUSED    (비어 있는 슬롯, 재사용 가능)
    1 = LP_NORMAL    (튜플을 가리키는 일반 슬롯)
    2 = LP_REDIRECT  (HOT chain의 다른 슬롯으로 redirect)
    3 = LP_DEAD      (dead, 인덱스 정리 전까지 유지)
"""

from collections import namedtuple

from psycopg2 import sql
from tabulate import tabulate

LP_UNUSED = 0
LP_NORMAL = 1
LP_REDIRECT = 2
LP_DEAD = 3

STATUS_NAMES = {
    LP_UNUSED: 'LP_UNUSED',
    LP_NORMAL: 'LP_NORMAL',
    LP_REDIRECT: 'LP_REDIRECT',
    LP_DEAD: 'LP_DEAD',
}

# t_infomask2 플래그 (htup_details.h)
HEAP_HOT_UPDATED = 0x4000
HEAP_ONLY_TUPLE = 0x8000

TupleRecord = namedtuple(
    'TupleRecord',
    ['lp', 'lp_flags', 't_xmin', 't_xmax', 't_ctid', 'hot_updated', 'heap_only'],
)

# xid는 client 라이브러리에 따라 int 범위 문제가 생길 수 있어 text로 받습니다.
PAGE_ITEMS_SQL = """
    SELECT
        lp,
        lp_flags,
        t_xmin::text,
        t_xmax::text,
        t_ctid::text,
        (t_infomask2 & %s) != 0 as hot_updated,
        (t_infomask2 & %s) != 0 as heap_only
    FROM heap_page_items(get_raw_page(%s, %s))
    ORDER BY lp
"""


def page_count(cur, relname):
    """
    relation이 차지하는 페이지 수 (pg_class.relpages)

    relpages는 통계 값이라 UPDATE 직후에는 늦게 반영될 수 있습니다.
    그래서 매번 ANALYZE로 갱신한 뒤 읽습니다.
    """
    cur.execute(sql.SQL("ANALYZE {}").format(sql.Identifier(relname)))
    cur.execute("SELECT relpages FROM pg_class WHERE oid = %s::regclass", (relname,))
    return cur.fetchone()[0]


def read_page_tuples(cur, relname, page_number):
    """
    지정한 페이지의 line pointer를 물리적 순서(lp)대로 반환합니다.

    호출 시점의 스냅샷일 뿐이며 캐시하지 않습니다.
    범위를 벗어난 페이지 번호는 DB 오류로 그대로 전파됩니다.
    """
    cur.execute(
        PAGE_ITEMS_SQL,
        (HEAP_HOT_UPDATED, HEAP_ONLY_TUPLE, relname, page_number),
    )
    return [TupleRecord(*row) for row in cur.fetchall()]


def classify_by_status(records):
    """lp_flags 별 개수. 키는 오름차순"""
    counts = {}
    for record in records:
        counts[record.lp_flags] = counts.get(record.lp_flags, 0) + 1
    return dict(sorted(counts.items()))


def status_name(flag):
    return STATUS_NAMES.get(flag, f'LP_?({flag})')


def describe_counts(counts):
    """{1: 16} -> 'LP_NORMAL=16'"""
    if not counts:
        return '(비어 있음)'
    return ', '.join(f'{status_name(flag)}={n}' for flag, n in counts.items())


def print_page(records, description=""):
    """페이지 스냅샷을 테이블 형식으로 출력"""
    if description:
        print(f"\n>> {description}")
    if not records:
        print("(결과 없음)")
        return
    rows = [
        (r.lp, status_name(r.lp_flags), r.t_xmin, r.t_xmax, r.t_ctid,
         'HOT updated' if r.hot_updated else '',
         'Heap-only' if r.heap_only else '')
        for r in records
    ]
    headers = ['lp', 'lp_flags', 't_xmin', 't_xmax', 't_ctid', 'hot_flag', 'heap_only']
    print(tabulate(rows, headers=headers, tablefmt='psql'))
    print(f"요약: {describe_counts(classify_by_status(records))}")
