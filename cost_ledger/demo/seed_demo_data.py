# cost_ledger/demo/seed_demo_data.py

import asyncio
from datetime import datetime
from typing import Callable

from cost_ledger.storage.repository import open_ledger

RATES = {"USD": 1, "GBP": 1.8, "EURO": 0.7, "ILS": 3.4}

COSTS = [
    {"sum": 100, "currency": "GBP", "category": "Food", "description": "lunch"},
    {"sum": 42.5, "currency": "usd", "category": "Transport", "description": "taxi"},
    {"sum": 250, "currency": "ILS", "category": "Food", "description": "groceries"},
    {"sum": 19.99, "currency": "Euro", "category": "Books", "description": "paperback"},
]


async def seed(
    store_name: str = "costsdb",
    data_dir: str = ".",
    clock: Callable[[], datetime] = datetime.now
) -> None:
    store = await open_ledger(store_name, 1, data_dir=data_dir, clock=clock)
    await store.set_rates(RATES)
    for cost in COSTS:
        await store.add_cost(cost)


if __name__ == "__main__":
    asyncio.run(seed())
    print("Demo ledger data inserted")
