#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys

from tva_api.db import init_db_pool, shutdown_db_pool
from tva_api.providers.factory import get_embedding_provider, get_violation_store
from tva_api.rules_corpus import MOTOR_VEHICLE_ACT_RULES, seed_rules


def main() -> int:
    parser = argparse.ArgumentParser(description="Embed the Motor Vehicle Act seed rules and upsert them into Postgres.")
    parser.add_argument("--only", action="append", default=[], help="Seed only this rule_id (repeatable)")
    parser.add_argument("--dry-run", action="store_true", help="Embed but do not write to the database")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    selected = set(args.only)
    rules = [r for r in MOTOR_VEHICLE_ACT_RULES if not selected or r["rule_id"] in selected]
    if not rules:
        print("No rules selected.", file=sys.stderr)
        return 2

    if not args.dry_run:
        init_db_pool()
    try:
        written = seed_rules(
            rules,
            embedder=get_embedding_provider(),
            store=get_violation_store(),
            dry_run=args.dry_run,
        )
    except RuntimeError as exc:
        print(f"ERROR: embedding failed: {exc}", file=sys.stderr)
        return 1
    finally:
        if not args.dry_run:
            shutdown_db_pool()

    if args.dry_run:
        print(f"Embedded {len(rules)} rules (dry run).")
        return 0
    print(f"Seeded {written}/{len(rules)} rules.")
    return 0 if written == len(rules) else 1


if __name__ == "__main__":
    raise SystemExit(main())
