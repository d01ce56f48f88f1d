"""
Chaos Simulation Script

Drives a running API through the order lifecycle under concurrency:
dine-in create, "add more items" merge, duplicate submissions fired at the
same table at once, and kitchen status moves. Checks afterwards that every
table has at most one open order and every order exactly one bill.

Run from project root: python scripts/simulate.py
"""

import argparse
import asyncio
import os
import random
import sys
import time
import uuid
from collections import Counter
from datetime import datetime
from typing import Any

import httpx

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from tableside.billing import format_amount  # noqa: E402

API_BASE_URL = os.environ.get("TABLESIDE_API_BASE_URL", "http://localhost:8001")
TOTAL_TABLES = 10
SUBMISSIONS_PER_TABLE = 5

MENU_ITEMS = [
    {"product_ref": "p-101", "name": "Paneer Butter Masala", "unit_price": 180.0},
    {"product_ref": "p-102", "name": "Dal Makhani", "unit_price": 160.0},
    {"product_ref": "p-205", "name": "Veg Noodles", "unit_price": 150.0},
    {"product_ref": "p-206", "name": "Veg Fried Rice", "unit_price": 140.0},
    {"product_ref": "p-301", "name": "Butter Naan", "unit_price": 40.0},
    {"product_ref": "p-310", "name": "Sweet Lassi", "unit_price": 60.0},
    {"product_ref": "p-402", "name": "Gulab Jamun", "unit_price": 70.0},
]
STATUS_PIPELINE = ["Preparing", "Cooking", "Ready", "Served"]


def generate_random_items() -> list[dict]:
    """Random cart lines, each product at most once."""
    picks = random.sample(MENU_ITEMS, k=random.randint(1, 3))
    return [{**item, "quantity": random.randint(1, 3)} for item in picks]


def generate_submission(table_key: str, **extra: Any) -> dict[str, Any]:
    return {
        "submission_id": uuid.uuid4().hex,
        "table_key": table_key,
        "items": generate_random_items(),
        **extra,
    }


async def submit(
    client: httpx.AsyncClient,
    payload: dict[str, Any],
) -> dict[str, Any]:
    """POST one submission and summarise the outcome."""
    start_time = time.time()
    try:
        response = await client.post(f"{API_BASE_URL}/api/orders", json=payload, timeout=30.0)
        elapsed = round(time.time() - start_time, 3)
        if response.status_code == 200:
            data = response.json()
            return {
                "success": True,
                "table_key": payload["table_key"],
                "outcome": data["outcome"],
                "replayed": data["replayed"],
                "order_id": data["order"]["id"],
                "total": data["order"]["bill_details"]["grand_total"],
                "time": elapsed,
            }
        return {
            "success": False,
            "table_key": payload["table_key"],
            "error": response.text[:100],
            "time": elapsed,
        }
    except httpx.HTTPError as e:
        return {
            "success": False,
            "table_key": payload["table_key"],
            "error": str(e)[:100],
            "time": round(time.time() - start_time, 3),
        }


# =============================================================================
# SINGLE FLOWS
# =============================================================================

async def check_single_flows() -> bool:
    """Walk one table through the whole lifecycle before the chaos run."""
    print("\n" + "=" * 70)
    print("TESTING INDIVIDUAL FLOWS")
    print("=" * 70)

    async with httpx.AsyncClient() as client:
        print("\n1. Health Check...")
        response = await client.get(f"{API_BASE_URL}/health")
        if response.status_code != 200:
            print(f"   FAILED: {response.text}")
            return False
        data = response.json()
        print(f"   Status: {data['status']}")
        print(f"   Database: {data['database']}")
        print(f"   Event broker: {data['event_broker']}")

        table_key = str(random.randint(100, 999))

        print(f"\n2. Dine-in order for table {table_key}...")
        first_payload = generate_submission(table_key)
        first = await submit(client, first_payload)
        if not first["success"]:
            print(f"   FAILED: {first['error']}")
            return False
        print(f"   Order #{first['order_id']} {first['outcome']}, total {format_amount(first['total'])}")

        print("\n3. Add more items...")
        second = await submit(
            client, generate_submission(table_key, merge_into=first["order_id"])
        )
        same_order = second.get("order_id") == first["order_id"]
        print(f"   Outcome: {second.get('outcome')} (same order: {same_order})")

        print("\n4. Replay the first submission...")
        replay = await submit(client, first_payload)
        print(f"   Replayed: {replay.get('replayed')} (order #{replay.get('order_id')})")

        print("\n5. Kitchen status moves...")
        order_id = first["order_id"]
        for status in STATUS_PIPELINE[1:]:
            response = await client.put(
                f"{API_BASE_URL}/api/orders/{order_id}/status", json={"status": status}
            )
            print(f"   -> {status}: HTTP {response.status_code}")

        response = await client.put(
            f"{API_BASE_URL}/api/orders/{order_id}/status", json={"status": "Cooking"}
        )
        print(f"   Served -> Cooking rejected: {response.status_code == 409}")

    print("\n" + "=" * 70)
    return same_order and bool(replay.get("replayed"))


# =============================================================================
# MAIN SIMULATION RUNNER
# =============================================================================

async def verify_invariants(client: httpx.AsyncClient, tables: list[str]) -> list[str]:
    """Return human-readable invariant violations."""
    problems = []
    for table_key in tables:
        response = await client.get(
            f"{API_BASE_URL}/api/orders/table/{table_key}", params={"open_only": "true"}
        )
        open_orders = response.json()["orders"]
        if len(open_orders) > 1:
            problems.append(f"table {table_key} has {len(open_orders)} open orders")

    response = await client.get(f"{API_BASE_URL}/api/bills", params={"limit": 500})
    refs = Counter(bill["order_ref"] for bill in response.json()["bills"])
    problems.extend(f"order #{ref} has {count} bills" for ref, count in refs.items() if count > 1)
    return problems


async def run_simulation(
    num_tables: int = TOTAL_TABLES,
    per_table: int = SUBMISSIONS_PER_TABLE,
) -> dict[str, Any]:
    """
    Fire per_table concurrent submissions at each of num_tables tables.

    Every table should end with one order: one "created" and the rest
    "merged".
    """
    base = random.randint(1000, 9000)
    tables = [str(base + i) for i in range(num_tables)]
    total = num_tables * per_table

    print("=" * 70)
    print("CHAOS SIMULATION - CONCURRENT SUBMISSIONS PER TABLE")
    print("=" * 70)
    print(f"Tables: {num_tables} x {per_table} submissions = {total}")
    print(f"Target: {API_BASE_URL}")
    print(f"Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient() as client:
        payloads = [generate_submission(t) for t in tables for _ in range(per_table)]
        random.shuffle(payloads)
        results = await asyncio.gather(*(submit(client, p) for p in payloads))
        problems = await verify_invariants(client, tables)
    total_time = round(time.time() - start_time, 2)

    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]
    outcomes = Counter(r["outcome"] for r in successful)
    orders_per_table = {
        t: len({r["order_id"] for r in successful if r["table_key"] == t}) for t in tables
    }

    print("\n" + "=" * 70)
    print("SIMULATION RESULTS")
    print("=" * 70)
    print(f"\nSuccessful submissions: {len(successful)}/{total}")
    print(f"Failed submissions: {len(failed)}/{total}")
    print(f"Created: {outcomes['created']}  Merged: {outcomes['merged']}")
    print(f"Total Time: {total_time}s")

    if successful:
        times = [r["time"] for r in successful]
        print("\nPerformance Metrics:")
        print(f"   Average Response: {round(sum(times) / len(times), 3)}s")
        print(f"   Fastest: {min(times)}s")
        print(f"   Slowest: {max(times)}s")

    split = [t for t, n in orders_per_table.items() if n > 1]
    if split:
        print(f"\nTables split across several orders: {split}")
    if problems:
        print("\nInvariant violations:")
        for problem in problems:
            print(f"   {problem}")
    if failed:
        print("\nFailed Submission Details (showing first 5):")
        for f in failed[:5]:
            print(f"   Table {f['table_key']}: {f.get('error', 'Unknown error')}")

    print("\n" + "=" * 70)
    print("OK" if not (split or problems) else "INVARIANTS BROKEN")
    print("=" * 70)

    return {
        "total": total,
        "successful": len(successful),
        "failed": len(failed),
        "outcomes": dict(outcomes),
        "problems": problems,
        "total_time": total_time,
    }


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Chaos Simulation Script")
    parser.add_argument("--tables", type=int, default=TOTAL_TABLES, help="Number of tables")
    parser.add_argument(
        "--per-table", type=int, default=SUBMISSIONS_PER_TABLE,
        help="Concurrent submissions per table",
    )
    parser.add_argument("--skip-tests", action="store_true", help="Skip individual flows")
    args = parser.parse_args()

    if not args.skip_tests:
        if not asyncio.run(check_single_flows()):
            print("\nPre-flight flows failed. Fix issues before running simulation.")
            sys.exit(1)
        print("\nPre-flight flows passed!")

    summary = asyncio.run(run_simulation(num_tables=args.tables, per_table=args.per_table))
    sys.exit(1 if summary["problems"] or summary["failed"] else 0)
