"""Random sample orders — startup seed data and the CLI order generator."""

import random
from typing import Optional

from muta.schemas.order import OrderCreate, OrderStatus

COLLECTOR_NAMES = [
    "Juan Pérez",
    "María García",
    "Carlos López",
    "Ana Martínez",
    "Pedro Rodríguez",
    "Laura Sánchez",
    "Diego González",
    "Sofía Ramírez",
]

STREETS = ["Av. Principal", "Calle 50", "Av. Balboa", "Calle Uruguay", "Via España"]
AREAS = ["Bella Vista", "El Cangrejo", "Obarrio", "San Francisco", "Paitilla"]


def random_address(rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return f"{rng.choice(STREETS)} #{rng.randint(1, 200)}, {rng.choice(AREAS)}"


def random_collector_name(rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(COLLECTOR_NAMES)


def random_status(rng: Optional[random.Random] = None) -> OrderStatus:
    return (rng or random).choice(list(OrderStatus))


def random_order(rng: Optional[random.Random] = None) -> OrderCreate:
    return OrderCreate(
        address=random_address(rng),
        status=random_status(rng),
        collector_name=random_collector_name(rng),
    )


def sample_orders(count: int, seed: Optional[int] = None) -> list[OrderCreate]:
    rng = random.Random(seed)
    return [random_order(rng) for _ in range(count)]
