# sdk/pystore.py
from typing import Any, Dict, Optional

import httpx
import requests


class StoreAPIError(Exception):
    def __init__(self, status_code: int, detail: Any):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"HTTP {status_code}: {detail}")


def _unwrap(r) -> Any:
    """Decode a requests/httpx response, raising StoreAPIError on 4xx/5xx."""
    if r.status_code >= 400:
        try:
            detail = r.json().get("detail")
        except ValueError:
            detail = r.text
        raise StoreAPIError(r.status_code, detail)
    if r.status_code == 204 or not r.content:
        return None
    return r.json()


class StoreClient:
    """Thin client for the storefront API.

    Keeps the current access/refresh pair after register/login/refresh and
    sends the access token on every authenticated call. ``session`` can be
    any requests-compatible client (e.g. a FastAPI TestClient).
    """

    def __init__(self, base_url: str = "http://localhost:8085", timeout: int = 10, session=None):
        self.base_url = base_url.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api/v1{path}"

    def _headers(self) -> Dict[str, str]:
        if not self.access_token:
            return {}
        return {"Authorization": f"Bearer {self.access_token}"}

    def _keep_tokens(self, body: Dict[str, Any]) -> Dict[str, Any]:
        self.access_token = body["access_token"]
        self.refresh_token = body["refresh_token"]
        return body

    # Auth
    def register(self, email: str, password: str, first_name: str = "", last_name: str = "", phone: str = ""):
        r = self.session.post(self._url("/auth/register"), json={
            "email": email, "password": password,
            "first_name": first_name, "last_name": last_name, "phone": phone,
        }, timeout=self.timeout)
        return self._keep_tokens(_unwrap(r))

    def login(self, email: str, password: str):
        r = self.session.post(self._url("/auth/login"), json={"email": email, "password": password},
                              timeout=self.timeout)
        return self._keep_tokens(_unwrap(r))

    def refresh(self):
        r = self.session.post(self._url("/auth/refresh"), json={"refresh_token": self.refresh_token},
                              timeout=self.timeout)
        return self._keep_tokens(_unwrap(r))

    def logout(self):
        r = self.session.post(self._url("/auth/logout"), json={"refresh_token": self.refresh_token},
                              timeout=self.timeout)
        body = _unwrap(r)
        self.access_token = None
        self.refresh_token = None
        return body

    def profile(self):
        r = self.session.get(self._url("/users/profile"), headers=self._headers(), timeout=self.timeout)
        return _unwrap(r)

    # Catalog
    def create_category(self, name: str, description: str = ""):
        r = self.session.post(self._url("/categories"), json={"name": name, "description": description},
                              headers=self._headers(), timeout=self.timeout)
        return _unwrap(r)

    def create_product(self, category_id: int, name: str, price: str, stock: int, sku: str, description: str = ""):
        r = self.session.post(self._url("/products"), json={
            "category_id": category_id, "name": name, "description": description,
            "price": str(price), "stock": stock, "sku": sku,
        }, headers=self._headers(), timeout=self.timeout)
        return _unwrap(r)

    def list_products(self, page: int = 1, limit: int = 10):
        r = self.session.get(self._url("/products"), params={"page": page, "limit": limit}, timeout=self.timeout)
        return _unwrap(r)

    def get_product(self, product_id: int):
        r = self.session.get(self._url(f"/products/{product_id}"), timeout=self.timeout)
        return _unwrap(r)

    def search_products(self, query: str, **filters):
        params = {"q": query}
        params.update({k: v for k, v in filters.items() if v is not None})
        r = self.session.get(self._url("/search"), params=params, timeout=self.timeout)
        return _unwrap(r)

    # Cart
    def view_cart(self):
        r = self.session.get(self._url("/cart"), headers=self._headers(), timeout=self.timeout)
        return _unwrap(r)

    def add_to_cart(self, product_id: int, quantity: int = 1):
        r = self.session.post(self._url("/cart/items"), json={"product_id": product_id, "quantity": quantity},
                              headers=self._headers(), timeout=self.timeout)
        return _unwrap(r)

    def update_cart_item(self, item_id: int, quantity: int):
        r = self.session.put(self._url(f"/cart/items/{item_id}"), json={"quantity": quantity},
                             headers=self._headers(), timeout=self.timeout)
        return _unwrap(r)

    def remove_from_cart(self, item_id: int):
        r = self.session.delete(self._url(f"/cart/items/{item_id}"), headers=self._headers(), timeout=self.timeout)
        return _unwrap(r)

    # Orders
    def place_order(self):
        r = self.session.post(self._url("/orders"), headers=self._headers(), timeout=self.timeout)
        return _unwrap(r)

    async def place_order_async(self):
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            r = await client.post(self._url("/orders"), headers=self._headers())
            return _unwrap(r)

    def list_orders(self, page: int = 1, limit: int = 10):
        r = self.session.get(self._url("/orders"), params={"page": page, "limit": limit},
                             headers=self._headers(), timeout=self.timeout)
        return _unwrap(r)

    def get_order(self, order_id: int):
        r = self.session.get(self._url(f"/orders/{order_id}"), headers=self._headers(), timeout=self.timeout)
        return _unwrap(r)


if __name__ == "__main__":
    import argparse

    from rich import print

    parser = argparse.ArgumentParser(description="storefront client")
    parser.add_argument("--base-url", default="http://127.0.0.1:8085")
    parser.add_argument("--email", required=True, help="User email")
    parser.add_argument("--password", required=True, help="User password")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("view-cart", help="View cart contents")

    add = subparsers.add_parser("add-to-cart", help="Add product to cart")
    add.add_argument("--product-id", type=int, required=True, help="Product ID")
    add.add_argument("--qty", type=int, default=1, help="Quantity to add")

    rm = subparsers.add_parser("remove-from-cart", help="Remove a cart line")
    rm.add_argument("--item-id", type=int, required=True, help="Cart item ID")

    subparsers.add_parser("place-order", help="Turn the cart into an order")
    subparsers.add_parser("list-orders", help="List your orders")

    sp = subparsers.add_parser("search", help="Search products")
    sp.add_argument("--query", required=True)

    args = parser.parse_args()
    c = StoreClient(base_url=args.base_url)

    try:
        c.login(args.email, args.password)
        if args.command == "view-cart":
            print(c.view_cart())
        elif args.command == "add-to-cart":
            print(c.add_to_cart(args.product_id, args.qty))
        elif args.command == "remove-from-cart":
            print(c.remove_from_cart(args.item_id))
        elif args.command == "place-order":
            print(c.place_order())
        elif args.command == "list-orders":
            print(c.list_orders())
        elif args.command == "search":
            print(c.search_products(args.query))
    except StoreAPIError as e:
        print(f"[red]{e}[/red]")
