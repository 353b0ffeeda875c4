#!/usr/bin/env python
"""
cdcwave PostgreSQL Example

Demonstrates replaying logical decoding records into changes, committing
offsets to DuckDB and exporting the batch to Arrow.

Prerequisites:
    - None. The records below are what ``pg_logical_slot_peek_changes``
      returns for a test_decoding slot; with a live server, use
      ``cdcwave.cdc.feed.iter_raw_records(cursor, "cdc_slot")`` instead.
"""

import logging

import cdcwave
from cdcwave.cdc import DuckDBOffsetStore, changes_to_arrow

ROWS = [
    ("0/16B3740", 501, "BEGIN 501"),
    ("0/16B3748", 501, "table public.accounts: INSERT: id[integer]:1 owner[text]:'Ada' balance[numeric]:100.00"),
    ("0/16B37A0", 501, "table public.accounts: INSERT: id[integer]:2 owner[text]:'O''Brien' balance[numeric]:7.5"),
    ("0/16B37F0", 501, "COMMIT 501"),
    ("0/16B3800", 502, "BEGIN 502"),
    ("0/16B3808", 502, "table public.accounts: UPDATE: id[integer]:2 owner[text]:'O''Brien' balance[numeric]:12.25"),
    ("0/16B3850", 502, "table public.accounts: DELETE: id[integer]:1"),
    ("0/16B3890", 502, "COMMIT 502"),
]

SETTINGS = {
    "initial.database": "inventory",
    "replication.slot.name": "cdc_slot",
}


def main():
    logging.basicConfig(level=logging.INFO)
    print("cdcwave - PostgreSQL Example")
    print("=" * 50)

    changes = []
    with DuckDBOffsetStore() as store:
        worker = cdcwave.postgres_worker(
            ROWS,
            SETTINGS,
            emit=changes.append,
            commit=store.committer({"slot": "cdc_slot"}),
            primary_keys={"public.accounts": ["id"]},
        )
        stats = worker.run()

        # Example 1: Emitted changes
        print("\n1. Changes:")
        print("-" * 40)
        for change in changes:
            print(f"  {change.change_type.value:6} {change.qualified_name} key={change.key()} values={change.values()}")

        # Example 2: Resume point
        print("\n2. Committed offset:")
        print("-" * 40)
        print(f"  {store.get({'slot': 'cdc_slot'})}")
        print(f"  {stats.to_dict()}")

    # Example 3: Arrow export
    print("\n3. Export to Arrow:")
    print("-" * 40)
    print(changes_to_arrow(changes))

    print("\nDone!")


if __name__ == "__main__":
    main()
