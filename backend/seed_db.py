#!/usr/bin/env python3
"""
Insert a sample group into the configured database:
Alice pays this month's bill and Bob has already paid her back.
"""

from datetime import date

from config import Config
from store import Store

SAMPLE_MEMBERS = [
    ("Alice", "alice@example.com"),
    ("Bob", "bob@example.com"),
    ("Carol", None),
]
SAMPLE_TOTAL = 90.00


def seed(store, today=None):
    """Insert the sample members, bill and payment. Returns the created bill."""
    today = today or date.today()

    members = [store.add_member(name, email) for name, email in SAMPLE_MEMBERS]
    alice, bob = members[0], members[1]

    bill = store.upsert_bill(today.month, today.year, alice['id'], SAMPLE_TOTAL)
    share = round(SAMPLE_TOTAL / len(members), 2)
    store.upsert_payment(bill['id'], bob['id'], share)

    return store.get_bill(today.month, today.year)


if __name__ == "__main__":
    with Store(Config.DATABASE_PATH) as store:
        bill = seed(store)

    print(f"Seeded {Config.DATABASE_PATH}")
    print(f"Bill {bill['month']}/{bill['year']}: ${bill['total_amount']:.2f} paid by {bill['payer_name']}")
    for payment in bill['payments']:
        print(f"  {payment['member_name']} paid back ${payment['amount']:.2f}")
