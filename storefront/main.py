# storefront/main.py
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

import structlog
from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth import AuthCoordinator
from .carts import CartService
from .catalog import CatalogService
from .config import Settings, get_settings
from .core import (
    AddToCartIn, AuthenticatedUser, AuthOut, CartOut, CategoryIn, CategoryOut,
    CategoryUpdateIn, LoginIn, OrderOut, OrderPage, ProductIn, ProductOut,
    ProductPage, ProductUpdateIn, RefreshTokenIn, RegisterIn, UpdateCartItemIn,
    UpdateProfileIn, UserOut,
)
from .database import Database
from .errors import StoreError
from .events import Publisher, build_publisher
from .inventory import InventoryLedger
from .logconfig import bind_request_context, clear_request_context, configure_logging
from .orders import OrderEngine
from .security import CredentialIssuer, PasswordHasher, TokenError, TokenSigner
from .storage import StorageBackend, build_storage
from .users import UserService

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    db: Database
    auth: AuthCoordinator
    issuer: CredentialIssuer
    users: UserService
    carts: CartService
    orders: OrderEngine
    catalog: CatalogService
    publisher: Publisher


def build_services(settings: Settings, publisher: Optional[Publisher] = None,
                   storage: Optional[StorageBackend] = None) -> Services:
    db = Database(settings)
    publisher = publisher or build_publisher(settings)
    ledger = InventoryLedger(row_locks=db.supports_row_locks)
    issuer = CredentialIssuer(
        TokenSigner(settings.jwt_secret, settings.jwt_algorithm),
        access_ttl=settings.access_token_ttl,
        refresh_ttl=settings.refresh_token_ttl,
    )
    return Services(
        db=db,
        auth=AuthCoordinator(
            db, issuer, PasswordHasher(settings.bcrypt_rounds), publisher,
            publish_failure_policy=settings.event_failure_policy,
        ),
        issuer=issuer,
        users=UserService(db),
        carts=CartService(db, ledger),
        orders=OrderEngine(db, ledger),
        catalog=CatalogService(db, storage or build_storage(settings), settings.max_upload_size),
        publisher=publisher,
    )


# ---------------------------
# Dependencies
# ---------------------------
bearer = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


async def current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    services: Services = Depends(get_services),
) -> AuthenticatedUser:
    if credentials is None:
        raise HTTPException(status_code=401, detail="authorization header required",
                            headers={"WWW-Authenticate": "Bearer"})
    try:
        user = services.issuer.verify_access(credentials.credentials)
    except TokenError:
        raise HTTPException(status_code=401, detail="invalid token", headers={"WWW-Authenticate": "Bearer"})
    bind_request_context(user_id=user.user_id)
    return user


def admin_user(user: AuthenticatedUser = Depends(current_user)) -> AuthenticatedUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="admin access required")
    return user


def create_app(settings: Optional[Settings] = None, publisher: Optional[Publisher] = None,
               storage: Optional[StorageBackend] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    services = build_services(settings, publisher=publisher, storage=storage)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        services.db.create_all()
        logger.info("Storefront started", environment=settings.environment)
        yield
        services.publisher.close()
        services.db.dispose()

    app = FastAPI(title="storefront", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        clear_request_context()
        bind_request_context(path=request.url.path, method=request.method)
        return await call_next(request)

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})

    # ---------------------------
    # Health
    # ---------------------------
    @app.get("/health")
    def health():
        return {"status": "ok"}

    # ---------------------------
    # Auth endpoints
    # ---------------------------
    @app.post("/api/v1/auth/register", response_model=AuthOut, status_code=201)
    def register(payload: RegisterIn, services: Services = Depends(get_services)):
        return services.auth.register(payload)

    @app.post("/api/v1/auth/login", response_model=AuthOut)
    def login(payload: LoginIn, services: Services = Depends(get_services)):
        return services.auth.login(payload)

    @app.post("/api/v1/auth/refresh", response_model=AuthOut)
    def refresh(payload: RefreshTokenIn, services: Services = Depends(get_services)):
        return services.auth.refresh(payload.refresh_token)

    @app.post("/api/v1/auth/logout")
    def logout(payload: RefreshTokenIn, services: Services = Depends(get_services)):
        services.auth.logout(payload.refresh_token)
        return {"message": "logout successful"}

    # ---------------------------
    # Profile
    # ---------------------------
    @app.get("/api/v1/users/profile", response_model=UserOut)
    def get_profile(user: AuthenticatedUser = Depends(current_user), services: Services = Depends(get_services)):
        return services.users.get_profile(user.user_id)

    @app.put("/api/v1/users/profile", response_model=UserOut)
    def update_profile(payload: UpdateProfileIn, user: AuthenticatedUser = Depends(current_user),
                       services: Services = Depends(get_services)):
        return services.users.update_profile(user.user_id, payload)

    # ---------------------------
    # Catalog (public reads, admin writes)
    # ---------------------------
    @app.get("/api/v1/categories", response_model=List[CategoryOut])
    def list_categories(services: Services = Depends(get_services)):
        return services.catalog.list_categories()

    @app.post("/api/v1/categories", response_model=CategoryOut, status_code=201)
    def create_category(payload: CategoryIn, _: AuthenticatedUser = Depends(admin_user),
                        services: Services = Depends(get_services)):
        return services.catalog.create_category(payload)

    @app.put("/api/v1/categories/{category_id}", response_model=CategoryOut)
    def update_category(category_id: int, payload: CategoryUpdateIn, _: AuthenticatedUser = Depends(admin_user),
                        services: Services = Depends(get_services)):
        return services.catalog.update_category(category_id, payload)

    @app.delete("/api/v1/categories/{category_id}", status_code=204)
    def delete_category(category_id: int, _: AuthenticatedUser = Depends(admin_user),
                        services: Services = Depends(get_services)):
        services.catalog.delete_category(category_id)

    @app.get("/api/v1/products", response_model=ProductPage)
    def list_products(page: int = 1, limit: int = 10, services: Services = Depends(get_services)):
        return services.catalog.list_products(page, limit)

    @app.get("/api/v1/search", response_model=ProductPage)
    def search_products(
        q: str = Query(..., min_length=1),
        category_id: Optional[int] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        page: int = 1,
        limit: int = 10,
        services: Services = Depends(get_services),
    ):
        return services.catalog.search_products(q, category_id, min_price, max_price, page, limit)

    @app.get("/api/v1/products/{product_id}", response_model=ProductOut)
    def get_product(product_id: int, services: Services = Depends(get_services)):
        return services.catalog.get_product(product_id)

    @app.post("/api/v1/products", response_model=ProductOut, status_code=201)
    def create_product(payload: ProductIn, _: AuthenticatedUser = Depends(admin_user),
                       services: Services = Depends(get_services)):
        return services.catalog.create_product(payload)

    @app.put("/api/v1/products/{product_id}", response_model=ProductOut)
    def update_product(product_id: int, payload: ProductUpdateIn, _: AuthenticatedUser = Depends(admin_user),
                       services: Services = Depends(get_services)):
        return services.catalog.update_product(product_id, payload)

    @app.delete("/api/v1/products/{product_id}", status_code=204)
    def delete_product(product_id: int, _: AuthenticatedUser = Depends(admin_user),
                       services: Services = Depends(get_services)):
        services.catalog.delete_product(product_id)

    @app.post("/api/v1/products/{product_id}/images", response_model=ProductOut, status_code=201)
    def upload_product_image(
        product_id: int,
        file: UploadFile = File(...),
        alt_text: str = Form(""),
        _: AuthenticatedUser = Depends(admin_user),
        services: Services = Depends(get_services),
    ):
        content = file.file.read()
        return services.catalog.add_product_image(product_id, file.filename or "", content, alt_text)

    # ---------------------------
    # Cart endpoints
    # ---------------------------
    @app.get("/api/v1/cart", response_model=CartOut)
    def get_cart(user: AuthenticatedUser = Depends(current_user), services: Services = Depends(get_services)):
        return services.carts.get_cart(user.user_id)

    @app.post("/api/v1/cart/items", response_model=CartOut)
    def add_to_cart(payload: AddToCartIn, user: AuthenticatedUser = Depends(current_user),
                    services: Services = Depends(get_services)):
        return services.carts.add_to_cart(user.user_id, payload.product_id, payload.quantity)

    @app.put("/api/v1/cart/items/{item_id}", response_model=CartOut)
    def update_cart_item(item_id: int, payload: UpdateCartItemIn, user: AuthenticatedUser = Depends(current_user),
                         services: Services = Depends(get_services)):
        return services.carts.update_cart_item(user.user_id, item_id, payload.quantity)

    @app.delete("/api/v1/cart/items/{item_id}", response_model=CartOut)
    def remove_from_cart(item_id: int, user: AuthenticatedUser = Depends(current_user),
                         services: Services = Depends(get_services)):
        return services.carts.remove_from_cart(user.user_id, item_id)

    # ---------------------------
    # Orders
    # ---------------------------
    @app.post("/api/v1/orders", response_model=OrderOut, status_code=201)
    def place_order(user: AuthenticatedUser = Depends(current_user), services: Services = Depends(get_services)):
        return services.orders.place_order(user.user_id)

    @app.get("/api/v1/orders", response_model=OrderPage)
    def list_orders(page: int = 1, limit: int = 10, user: AuthenticatedUser = Depends(current_user),
                    services: Services = Depends(get_services)):
        return services.orders.get_orders(user.user_id, page, limit)

    @app.get("/api/v1/orders/{order_id}", response_model=OrderOut)
    def get_order(order_id: int, user: AuthenticatedUser = Depends(current_user),
                  services: Services = Depends(get_services)):
        return services.orders.get_order(user.user_id, order_id)

    return app


def run():
    import uvicorn

    uvicorn.run("storefront.main:create_app", factory=True, host="0.0.0.0", port=8085)
