import os
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pymongo.database import Database
from pymongo.errors import PyMongoError

import admin
import catalog
from accounts import authenticate, ensure_admin_user, login_with_google, register_user
from config import Settings
from database import connect, ensure_indexes, get_db, serialize_doc
from errors import ValidationFailed, register_error_handlers
from logging_config import add_context, clear_context, configure_logging, get_logger
from notifications import EmailPort, NotificationDispatcher, build_mailer
from orders import OrderService, get_order_service
from payments import PaymentGateway, build_gateway
from request_schemas import (
    GoogleAuthBody,
    LoginBody,
    OrderCreateBody,
    OrderStatusBody,
    PaymentStatusBody,
    ProductCreateBody,
    ProductUpdateBody,
    RegisterBody,
)
from schemas import Role
from security import TOKEN_COOKIE, create_token, get_current_user, require_admin

logger = get_logger(__name__)

router = APIRouter()


# ----------------------- Utils -----------------------
def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def issue_token(response: Response, user: dict, settings: Settings, expires_in: timedelta) -> str:
    token = create_token(str(user["_id"]), user.get("role", Role.USER.value), settings, expires_in)
    response.set_cookie(
        TOKEN_COOKIE,
        token,
        max_age=int(expires_in.total_seconds()),
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    return token


def user_summary(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role", Role.USER.value),
    }


# ----------------------- Health -----------------------
@router.get("/")
def root():
    return {"message": "Storefront API running"}


@router.get("/health")
def health(request: Request):
    response = {"status": "ok", "database": "not connected", "collections": []}
    db = getattr(request.app.state, "db", None)
    if db is not None:
        try:
            response["collections"] = sorted(db.list_collection_names())[:10]
            response["database"] = "connected"
        except PyMongoError as e:
            response["status"] = "degraded"
            response["database"] = f"error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@router.post("/auth/register", status_code=201)
def register(body: RegisterBody, response: Response, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = register_user(db, body, settings)
    token = issue_token(response, user, settings, timedelta(hours=settings.jwt_expires_hours))
    return {**user_summary(user), "token": token}


@router.post("/auth/login")
def login(body: LoginBody, response: Response, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = authenticate(db, body.email, body.password)
    token = issue_token(response, user, settings, timedelta(hours=settings.jwt_expires_hours))
    logger.info("user_logged_in", user_id=str(user["_id"]), role=user.get("role"))
    return {
        "success": True,
        "token": token,
        "user": user_summary(user),
        "redirect_url": "/admin/dashboard" if user.get("role") == Role.ADMIN.value else "/",
    }


@router.post("/auth/google")
def google_login(body: GoogleAuthBody, response: Response, db: Database = Depends(get_db), settings: Settings = Depends(get_settings)):
    user = login_with_google(db, body.user_info)
    token = issue_token(response, user, settings, timedelta(days=settings.jwt_oauth_expires_days))
    return {
        "token": token,
        "user": {
            **user_summary(user),
            "profile_picture": user.get("profile_picture", ""),
            "is_email_verified": user.get("is_email_verified", False),
        },
    }


@router.get("/auth/me")
def me(user=Depends(get_current_user)):
    return user


@router.post("/auth/logout")
def logout(response: Response):
    response.delete_cookie(TOKEN_COOKIE)
    return {"message": "Logged out"}


# ----------------------- Products -----------------------
@router.get("/products")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    limit: int = Query(100, ge=1, le=200),
    db: Database = Depends(get_db),
):
    return catalog.list_products(db, q=q, category=category, limit=limit)


@router.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return serialize_doc(catalog.get_product(db, product_id))


@router.post("/products", status_code=201)
def create_product(body: ProductCreateBody, db: Database = Depends(get_db), user=Depends(require_admin)):
    return {"id": catalog.create_product(db, body)}


@router.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, db: Database = Depends(get_db), user=Depends(require_admin)):
    changes = body.model_dump(exclude_none=True)
    if not changes:
        raise ValidationFailed("No fields to update")
    catalog.update_product(db, product_id, changes)
    return {"ok": True}


@router.delete("/products/{product_id}")
def delete_product(product_id: str, db: Database = Depends(get_db), user=Depends(require_admin)):
    catalog.delete_product(db, product_id)
    return {"ok": True}


# ----------------------- Orders -----------------------
@router.post("/orders", status_code=201)
def create_order(body: OrderCreateBody, user=Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    result = service.place_order(user, body)
    result["message"] = "Order created successfully"
    return result


@router.get("/orders/mine")
def my_orders(user=Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    return [serialize_doc(o) for o in service.list_for_user(user["id"])]


@router.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    return serialize_doc(service.get_order(order_id, user))


# ----------------------- Payment -----------------------
@router.post("/payment/status")
def payment_status(body: PaymentStatusBody, user=Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    result = service.update_payment_status(body.order_id, body.payment_intent_id, user, body.status)
    return {"message": "Payment status updated to paid.", **result}


@router.post("/payment/intent/{order_id}")
def payment_intent(order_id: str, user=Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    return service.create_payment_intent(order_id, user)


# ----------------------- Admin -----------------------
@router.get("/admin/orders")
def admin_orders(db: Database = Depends(get_db), user=Depends(require_admin)):
    return admin.list_orders(db)


@router.get("/admin/orders/stats")
def admin_order_stats(db: Database = Depends(get_db), user=Depends(require_admin)):
    return admin.order_stats(db)


@router.get("/admin/orders/{order_id}")
def admin_order_details(order_id: str, user=Depends(require_admin), service: OrderService = Depends(get_order_service)):
    return admin.admin_order_view(service.get_order(order_id, user))


@router.put("/admin/orders/{order_id}/status")
def admin_update_order_status(
    order_id: str,
    body: OrderStatusBody,
    user=Depends(require_admin),
    service: OrderService = Depends(get_order_service),
):
    order = service.update_status(order_id, body.status, body.note)
    return {"message": "Order status updated successfully", "order": admin.admin_order_view(order)}


@router.delete("/admin/orders/{order_id}")
def admin_delete_order(order_id: str, user=Depends(require_admin), service: OrderService = Depends(get_order_service)):
    service.delete_order(order_id)
    return {"message": "Order deleted successfully"}


@router.get("/admin/dashboard")
def admin_dashboard(db: Database = Depends(get_db), user=Depends(require_admin)):
    return admin.dashboard_overview(db)


@router.get("/admin/dashboard/stats")
def admin_dashboard_stats(db: Database = Depends(get_db), user=Depends(require_admin)):
    return admin.dashboard_overview(db)


@router.get("/admin/dashboard/recent-orders")
def admin_recent_orders(limit: int = Query(5, ge=1, le=50), db: Database = Depends(get_db), user=Depends(require_admin)):
    return admin.recent_orders(db, limit)


@router.get("/admin/dashboard/low-stock-products")
def admin_low_stock(
    threshold: int = Query(10, ge=1),
    limit: int = Query(5, ge=1, le=50),
    db: Database = Depends(get_db),
    user=Depends(require_admin),
):
    return admin.low_stock_products(db, threshold, limit)


# ----------------------- App -----------------------
def _wire_database(app: FastAPI, db: Database) -> None:
    state = app.state
    state.db = db
    ensure_indexes(db)
    state.order_service = OrderService(
        db,
        state.gateway,
        NotificationDispatcher(state.mailer, state.settings.frontend_url),
        currency=state.settings.payment_currency,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    state = app.state
    settings: Settings = state.settings
    client = None
    if getattr(state, "db", None) is None:
        client = connect(
            settings.database_url,
            settings.database_name,
            retries=settings.mongo_connect_retries,
            delay=settings.mongo_retry_delay_seconds,
        )
        _wire_database(app, client[settings.database_name])
        if settings.seed_demo_data:
            catalog.seed_products(state.db)
            ensure_admin_user(state.db, settings)
    logger.info("app_started", environment=settings.environment)
    try:
        yield
    finally:
        state.gateway.close()
        state.mailer.close()
        if client is not None:
            client.close()
            logger.info("mongo_connection_closed")


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[Database] = None,
    gateway: Optional[PaymentGateway] = None,
    mailer: Optional[EmailPort] = None,
) -> FastAPI:
    """Build the application.

    Collaborators that are not passed in are built from the settings; the
    database connection is then opened by the lifespan handler.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.environment)

    app = FastAPI(title="Storefront API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = None
    app.state.gateway = gateway or build_gateway(settings)
    app.state.mailer = mailer or build_mailer(settings)
    if db is not None:
        _wire_database(app, db)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        clear_context()
        add_context(request_id=request.headers.get("X-Request-ID") or uuid4().hex[:12], method=request.method, path=request.url.path)
        started = time.perf_counter()
        response = await call_next(request)
        logger.info("request_completed", status_code=response.status_code, duration_ms=round((time.perf_counter() - started) * 1000, 1))
        return response

    register_error_handlers(app, debug=settings.debug)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
