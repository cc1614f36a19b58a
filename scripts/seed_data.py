"""Seed sample cooks, drivers and orders for local development."""

import asyncio

from moai.config import get_settings
from moai.models.common import Location
from moai.models.cook import Cook
from moai.models.driver import Driver, VehicleType
from moai.models.order import DeliveryInfo, Order, OrderItem, OrderStatus
from moai.state.documents import COOKS, DRIVERS, ORDERS, DocumentStore
from moai.state.manager import StateManager


async def seed_cooks(store: DocumentStore) -> list[Cook]:
    """Seed home cooks."""
    print("Seeding cooks...")

    cooks = [
        Cook(
            display_name="Carmen Rojas",
            email="carmen.rojas@example.com",
            phone="+56911111111",
            is_online=True,
            location=Location(lat=-33.4372, lng=-70.6506),
            address="Av. Providencia 1234, Providencia",
            rating=4.9,
        ),
        Cook(
            display_name="Luis Fuentes",
            email="luis.fuentes@example.com",
            phone="+56922222222",
            is_online=True,
            self_delivery=True,
            location=Location(lat=-33.4190, lng=-70.6060),
            address="Los Leones 456, Providencia",
            rating=4.7,
        ),
    ]

    for cook in cooks:
        await store.set(COOKS, cook.id, cook)
        print(f"  ✓ Added {cook.display_name} (rating: {cook.rating})")

    print("✓ Cooks seeded successfully\n")
    return cooks


async def seed_drivers(store: DocumentStore) -> None:
    """Seed driver pool."""
    print("Seeding drivers...")

    drivers = [
        Driver(
            display_name="Juan Pérez",
            phone="+56933333333",
            vehicle_type=VehicleType.MOTORCYCLE,
            is_online=True,
            is_available=True,
            rating=4.8,
        ),
        Driver(
            display_name="Camila Soto",
            phone="+56944444444",
            vehicle_type=VehicleType.BIKE,
            is_online=True,
            is_available=True,
            rating=4.9,
        ),
        Driver(
            display_name="Diego Muñoz",
            phone="+56955555555",
            vehicle_type=VehicleType.CAR,
            rating=4.6,
        ),
    ]

    for driver in drivers:
        await store.set(DRIVERS, driver.id, driver)
        print(f"  ✓ Added {driver.display_name} ({driver.vehicle_type.value}, online: {driver.is_online})")

    print("✓ Drivers seeded successfully\n")


async def seed_orders(store: DocumentStore, cooks: list[Cook]) -> None:
    """Seed orders ready for pickup."""
    print("Seeding orders...")

    settings = get_settings()
    samples = [
        ("Ana Silva", "Av. Italia 1020, Ñuñoa", Location(lat=-33.4450, lng=-70.6230),
         [OrderItem(dish_id="pastel-choclo", dish_name="Pastel de choclo", quantity=2, price=6500)]),
        ("Pedro Díaz", "Irarrázaval 3300, Ñuñoa", Location(lat=-33.4540, lng=-70.5980),
         [OrderItem(dish_id="cazuela", dish_name="Cazuela de vacuno", quantity=1, price=5500),
          OrderItem(dish_id="sopaipillas", dish_name="Sopaipillas", quantity=6, price=500)]),
        ("María López", "Apoquindo 4500, Las Condes", Location(lat=-33.4110, lng=-70.5770),
         [OrderItem(dish_id="empanadas", dish_name="Empanadas de pino", quantity=12, price=2200)]),
    ]

    for i, (customer_name, address, coordinates, items) in enumerate(samples):
        order = Order(
            customer_id=f"customer-{i + 1}",
            customer_name=customer_name,
            cooker_id=cooks[i % len(cooks)].id,
            status=OrderStatus.READY,
            dishes=items,
            delivery_info=DeliveryInfo(
                address=address,
                phone="+56900000000",
                coordinates=coordinates,
            ),
        )
        order.calculate_totals(settings.fees)
        await store.set(ORDERS, order.id, order)
        print(f"  ✓ Added order #{order.short_id} for {customer_name} (total: {order.total})")

    print("✓ Orders seeded successfully\n")


async def main() -> None:
    """Run all seed functions."""
    print("\n" + "=" * 50)
    print("  Seeding Moai Delivery Data")
    print("=" * 50 + "\n")

    state_manager = StateManager(get_settings().redis_url)
    await state_manager.connect()
    store = DocumentStore(state_manager)

    cooks = await seed_cooks(store)
    await seed_drivers(store)
    await seed_orders(store, cooks)

    await state_manager.disconnect()

    print("=" * 50)
    print("  ✓ All data seeded successfully!")
    print("=" * 50 + "\n")


if __name__ == "__main__":
    asyncio.run(main())
