import asyncio
import uuid

from rich import print

from sdk.pystore import StoreAPIError, StoreClient

BASE_URL = "http://127.0.0.1:8085"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-password"


async def simulate_purchase(client: StoreClient, name: str):
    try:
        order = await client.place_order_async()
        print(f"[green]{name} placed order {order['id']} (total {order['total_amount']})[/green]")
    except StoreAPIError as e:
        if e.status_code == 409:
            print(f"[red]{name} order failed: {e.detail}[/red]")
        else:
            print(f"[red]{name} order failed with error: {e}[/red]")


async def main():
    tag = uuid.uuid4().hex[:6]
    admin = StoreClient(base_url=BASE_URL)
    admin.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    category = admin.create_category(f"limited-{tag}")
    product = admin.create_product(category["id"], "Gaming Laptop", "50.00", 5, f"GL-{tag}")
    print(f"\nRegistered product: {product['name']} stock={product['stock']}")

    # both buyers want 3 of the 5 units
    buyers = {}
    for name in ("alice", "bob"):
        c = StoreClient(base_url=BASE_URL)
        c.register(f"{name}-{tag}@example.com", "secret123")
        c.add_to_cart(product["id"], 3)
        buyers[name] = c

    print("\nSimulating concurrent orders...")
    await asyncio.gather(*(simulate_purchase(c, name) for name, c in buyers.items()))

    print("\nFinal product state:", admin.get_product(product["id"]))
    for name, c in buyers.items():
        print(f"{name} cart:", c.view_cart())


if __name__ == "__main__":
    asyncio.run(main())
