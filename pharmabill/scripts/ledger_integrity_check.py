#!/usr/bin/env python3
"""
Read-only re-verification of stored ledger/inventory invariants.

Usage:
  python -m pharmabill.scripts.ledger_integrity_check [--db URL] [--json]

Exits 1 when any finding is reported.
"""
import argparse
import json
import os
import sys

import psycopg
from psycopg.rows import dict_row

DB_URL_DEFAULT = os.getenv("APP_DATABASE_URL") or os.getenv("DATABASE_URL") or "postgresql://localhost/pharmabill"


def get_conn(db_url):
    return psycopg.connect(db_url, row_factory=dict_row)


def unbalanced_journals(cur):
    cur.execute(
        """
        SELECT e.id, e.reference_type, e.reference_id,
               COALESCE(SUM(CASE WHEN t.type = 'debit' THEN t.amount ELSE 0 END), 0) AS debit,
               COALESCE(SUM(CASE WHEN t.type = 'credit' THEN t.amount ELSE 0 END), 0) AS credit
        FROM journal_entries e
        LEFT JOIN journal_transactions t ON t.entry_id = e.id
        GROUP BY e.id, e.reference_type, e.reference_id
        HAVING ABS(
          COALESCE(SUM(CASE WHEN t.type = 'debit' THEN t.amount ELSE 0 END), 0)
          - COALESCE(SUM(CASE WHEN t.type = 'credit' THEN t.amount ELSE 0 END), 0)
        ) > 0.01
        ORDER BY e.id
        """
    )
    return cur.fetchall()


def short_journals(cur):
    cur.execute(
        """
        SELECT e.id, e.reference_type, e.reference_id, COUNT(t.entry_id) AS legs
        FROM journal_entries e
        LEFT JOIN journal_transactions t ON t.entry_id = e.id
        GROUP BY e.id, e.reference_type, e.reference_id
        HAVING COUNT(t.entry_id) < 2
        ORDER BY e.id
        """
    )
    return cur.fetchall()


def negative_stock(cur):
    cur.execute(
        """
        SELECT b.id AS batch_id, b.product_id, p.name, b.stock
        FROM batches b
        JOIN products p ON p.id = b.product_id
        WHERE b.stock < 0
        ORDER BY p.name, b.id
        """
    )
    return cur.fetchall()


def voucher_status_mismatches(cur):
    # `used` <=> balance <= 0; expired vouchers are left alone.
    cur.execute(
        """
        SELECT id, customer_name, balance, status
        FROM vouchers
        WHERE (status = 'active' AND balance <= 0)
           OR (status = 'used' AND balance > 0)
        ORDER BY id
        """
    )
    return cur.fetchall()


CHECKS = (
    ("unbalanced_journals", unbalanced_journals),
    ("journals_with_fewer_than_two_legs", short_journals),
    ("negative_stock", negative_stock),
    ("voucher_status_mismatches", voucher_status_mismatches),
)


def run_checks(cur) -> dict:
    return {name: fn(cur) for name, fn in CHECKS}


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Verify journal balance, stock and voucher invariants.")
    parser.add_argument("--db", default=DB_URL_DEFAULT)
    parser.add_argument("--json", action="store_true", help="Print findings as JSON")
    args = parser.parse_args(argv)

    with get_conn(args.db) as conn:
        with conn.cursor() as cur:
            findings = run_checks(cur)

    total = sum(len(rows) for rows in findings.values())
    if args.json:
        print(json.dumps({"total": total, "findings": findings}, default=str, indent=2))
    else:
        for name, rows in findings.items():
            print(f"{name}: {len(rows)}")
            for r in rows:
                print("  " + json.dumps(r, default=str))
    return 1 if total else 0


if __name__ == "__main__":
    sys.exit(main())
