"""
Lab 공통 유틸리티
================

lab11 이후 실습들이 함께 쓰는 연결 설정과 출력 헬퍼입니다.

환경 변수로 접속 정보를 바꿀 수 있습니다:
    MVCC_LAB_HOST, MVCC_LAB_PORT, MVCC_LAB_DATABASE,
    MVCC_LAB_USER, MVCC_LAB_PASSWORD
"""

import os

import psycopg2
from tabulate import tabulate

# 데이터베이스 연결 설정
DB_CONFIG = {
    'host': os.environ.get('MVCC_LAB_HOST', 'localhost'),
    'port': int(os.environ.get('MVCC_LAB_PORT', '5432')),
    'database': os.environ.get('MVCC_LAB_DATABASE', 'mvcc_lab'),
    'user': os.environ.get('MVCC_LAB_USER', 'study'),
    'password': os.environ.get('MVCC_LAB_PASSWORD', 'study123'),
}


def get_connection(autocommit=False):
    """새 데이터베이스 연결 생성 (호출할 때마다 독립된 세션)"""
    conn = psycopg2.connect(**DB_CONFIG)
    conn.autocommit = autocommit
    return conn


def print_section(title):
    print(f"\n{'=' * 60}")
    print(f" {title}")
    print('=' * 60)


def print_result(cursor, description=""):
    """쿼리 결과를 테이블 형식으로 출력"""
    if description:
        print(f"\n>> {description}")
    rows = cursor.fetchall()
    if rows:
        headers = [desc[0] for desc in cursor.description]
        print(tabulate(rows, headers=headers, tablefmt='psql'))
    else:
        print("(결과 없음)")
    return rows


def wait_for_user(message="계속하려면 Enter를 누르세요..."):
    """사용자 입력 대기"""
    print(f"\n  ⏸️  {message}")
    input()
