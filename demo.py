#!/usr/bin/env python
import uuid

from rich import print

from sdk.pystore import StoreClient

# Expects a running server (storefront) and an admin account; create one by
# registering and setting users.role = 'admin' in the database.
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-password"


def main():
    admin = StoreClient(base_url="http://127.0.0.1:8085")
    admin.login(ADMIN_EMAIL, ADMIN_PASSWORD)

    # -----------------------------
    # Catalog
    # -----------------------------
    print("\nCreating category and products...")
    tag = uuid.uuid4().hex[:6]
    category = admin.create_category(f"electronics-{tag}")
    laptop = admin.create_product(category["id"], "Laptop", "1500.00", 3, f"LAP-{tag}")
    mouse = admin.create_product(category["id"], "Mouse", "25.50", 10, f"MOU-{tag}")
    print(laptop)
    print(mouse)

    print("\nSearching for 'laptop'...")
    print(admin.search_products("laptop"))

    # -----------------------------
    # Customer
    # -----------------------------
    c = StoreClient(base_url="http://127.0.0.1:8085")
    email = f"alice-{tag}@example.com"
    print(f"\nRegistering {email}...")
    print(c.register(email, "secret123", first_name="Alice"))

    print("\nAdding products to cart...")
    c.add_to_cart(laptop["id"], 1)
    print(c.add_to_cart(mouse["id"], 2))

    print("\nPlacing order...")
    order = c.place_order()
    print(order)

    print("\nCart after order...")
    print(c.view_cart())

    print("\nRotating refresh token...")
    c.refresh()

    print("\nListing orders...")
    print(c.list_orders())

    c.logout()


if __name__ == "__main__":
    main()
