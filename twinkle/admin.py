"""
Admin back office routes.

Every route requires HTTP Basic credentials matching ADMIN_EMAIL and
ADMIN_PASSWORD. Nothing here participates in checkout; admins only edit the
configuration the pricing rules read.
"""
from __future__ import annotations
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel

from .config import settings
from .database import get_blob_store, get_store
from .delivery import DEFAULT_DELIVERY_CONFIGURATION
from .schemas import (
    ORDER_STATUS_FLOW,
    DeliveryConfiguration,
    DiscountCode,
    EventService,
    OrderStatusUpdate,
    Product,
    ProductUpdate,
    TimingSurcharge,
)

logger = logging.getLogger(__name__)

security = HTTPBasic()

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp", "image/gif")


def require_admin(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    if not settings.ADMIN_PASSWORD:
        raise HTTPException(status_code=503, detail="Admin access is not configured")
    email_ok = secrets.compare_digest(credentials.username.encode(), settings.ADMIN_EMAIL.encode())
    password_ok = secrets.compare_digest(credentials.password.encode(), settings.ADMIN_PASSWORD.encode())
    if not (email_ok and password_ok):
        raise HTTPException(
            status_code=401,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username


router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def _not_found(what: str):
    return HTTPException(status_code=404, detail=f"{what} not found")


# -----------------
# Products
# -----------------

@router.get("/products")
async def admin_list_products(db=Depends(get_store)):
    return await db.get_documents("products", {}, limit=500, sort=[("created_at", -1)])


@router.post("/products", status_code=201)
async def admin_create_product(payload: Product, db=Depends(get_store)):
    return await db.create_document("products", payload.model_dump(exclude={"id"}))


@router.put("/products/{product_id}")
async def admin_update_product(product_id: str, payload: ProductUpdate, db=Depends(get_store)):
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="Nothing to update")
    if not await db.update_document("products", product_id, changes):
        raise _not_found("Product")
    return await db.find_document("products", {"id": product_id})


@router.delete("/products/{product_id}")
async def admin_delete_product(product_id: str, db=Depends(get_store)):
    if not await db.delete_document("products", product_id):
        raise _not_found("Product")
    return {"ok": True}


@router.post("/uploads", status_code=201)
async def admin_upload_image(file: UploadFile = File(...), blobs=Depends(get_blob_store)):
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="Only JPEG, PNG, WebP and GIF images can be uploaded")
    # one byte past the cap is enough to detect an oversize file
    data = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Image must be 5MB or smaller")
    url = await blobs.upload(file.filename or "upload", data, file.content_type)
    return {"url": url}


# -----------------
# Orders
# -----------------

@router.get("/orders")
async def admin_list_orders(status: Optional[str] = None, db=Depends(get_store)):
    filter_dict = {"status": status} if status else {}
    return await db.get_documents("orders", filter_dict, limit=500, sort=[("created_at", -1)])


@router.get("/orders/{order_id}")
async def admin_get_order(order_id: str, db=Depends(get_store)):
    doc = await db.find_document("orders", {"id": order_id})
    if not doc:
        raise _not_found("Order")
    return doc


@router.put("/orders/{order_id}/status")
async def admin_update_order_status(order_id: str, payload: OrderStatusUpdate, db=Depends(get_store)):
    doc = await db.find_document("orders", {"id": order_id})
    if not doc:
        raise _not_found("Order")
    current = doc.get("status", "pending")
    if ORDER_STATUS_FLOW.index(payload.status) < ORDER_STATUS_FLOW.index(current):
        raise HTTPException(status_code=400, detail=f"Cannot move an order from {current} back to {payload.status}")
    await db.update_document("orders", order_id, {"status": payload.status})
    logger.info("Order %s status %s -> %s", doc.get("order_number"), current, payload.status)
    return await db.find_document("orders", {"id": order_id})


# -----------------
# Discount codes
# -----------------

@router.get("/discount-codes")
async def admin_list_discount_codes(db=Depends(get_store)):
    return await db.get_documents("discount_codes", {}, limit=500, sort=[("created_at", -1)])


@router.post("/discount-codes", status_code=201)
async def admin_create_discount_code(payload: DiscountCode, db=Depends(get_store)):
    if await db.find_document("discount_codes", {"code": payload.code}):
        raise HTTPException(status_code=409, detail=f"Discount code {payload.code} already exists")
    return await db.create_document("discount_codes", payload.model_dump(exclude={"id"}))


@router.put("/discount-codes/{code_id}")
async def admin_update_discount_code(code_id: str, payload: DiscountCode, db=Depends(get_store)):
    # used_count is owned by order submission
    if not await db.update_document("discount_codes", code_id, payload.model_dump(exclude={"id", "used_count"})):
        raise _not_found("Discount code")
    return await db.find_document("discount_codes", {"id": code_id})


@router.delete("/discount-codes/{code_id}")
async def admin_delete_discount_code(code_id: str, db=Depends(get_store)):
    if not await db.delete_document("discount_codes", code_id):
        raise _not_found("Discount code")
    return {"ok": True}


# -----------------
# Delivery and timing surcharges
# -----------------

@router.get("/delivery-configuration")
async def admin_get_delivery_configuration(db=Depends(get_store)):
    docs = await db.get_documents(
        "delivery_configurations", {"is_active": True}, limit=1, sort=[("updated_at", -1)]
    )
    return docs[0] if docs else DEFAULT_DELIVERY_CONFIGURATION.model_dump(mode="json")


@router.put("/delivery-configuration")
async def admin_save_delivery_configuration(payload: DeliveryConfiguration, db=Depends(get_store)):
    await db.update_many("delivery_configurations", {"is_active": True}, {"is_active": False})
    saved = await db.create_document(
        "delivery_configurations", payload.model_dump(mode="json", exclude={"id"}) | {"is_active": True}
    )
    logger.info("Delivery configuration %s activated (%s model)", saved.get("id"), payload.model)
    return saved


@router.get("/timing-surcharges")
async def admin_list_timing_surcharges(db=Depends(get_store)):
    return await db.get_documents("timing_surcharges", {}, sort=[("surcharge_amount", 1), ("name", 1)])


@router.post("/timing-surcharges", status_code=201)
async def admin_create_timing_surcharge(payload: TimingSurcharge, db=Depends(get_store)):
    return await db.create_document("timing_surcharges", payload.model_dump(exclude={"id"}))


@router.put("/timing-surcharges/{surcharge_id}")
async def admin_update_timing_surcharge(surcharge_id: str, payload: TimingSurcharge, db=Depends(get_store)):
    if not await db.update_document("timing_surcharges", surcharge_id, payload.model_dump(exclude={"id"})):
        raise _not_found("Timing surcharge")
    return await db.find_document("timing_surcharges", {"id": surcharge_id})


@router.delete("/timing-surcharges/{surcharge_id}")
async def admin_delete_timing_surcharge(surcharge_id: str, db=Depends(get_store)):
    if not await db.delete_document("timing_surcharges", surcharge_id):
        raise _not_found("Timing surcharge")
    return {"ok": True}


# -----------------
# Events and inquiries
# -----------------

@router.post("/events-services", status_code=201)
async def admin_create_event_service(payload: EventService, db=Depends(get_store)):
    return await db.create_document("events_services", payload.model_dump(exclude={"id"}))


@router.delete("/events-services/{service_id}")
async def admin_delete_event_service(service_id: str, db=Depends(get_store)):
    if not await db.delete_document("events_services", service_id):
        raise _not_found("Event service")
    return {"ok": True}


@router.get("/inquiries")
async def admin_list_inquiries(db=Depends(get_store)):
    return await db.get_documents("inquiries", {}, limit=500, sort=[("created_at", -1)])


# -----------------
# Dashboard
# -----------------

@router.get("/stats")
async def admin_stats(db=Depends(get_store)):
    orders = await db.get_documents("orders", {}, limit=10000)
    return {
        "total_orders": len(orders),
        "total_revenue": round(sum(o.get("total_amount", 0) for o in orders), 2),
        "pending_orders": sum(1 for o in orders if o.get("status") == "pending"),
        "total_products": await db.count_documents("products"),
    }


SEED_PRODUCTS: list[dict] = [
    {"title": "Hyper-realistic Artificial Fir Tree", "description": "Full, lifelike artificial fir delivered, installed and collected after the season.", "price": 450.0, "category": "trees", "color": ["green"], "decorated": True},
    {"title": "Noble Fir", "description": "Fresh-cut Noble Fir with sturdy branches for heavy ornaments.", "price": 520.0, "category": "trees", "color": ["green"], "decorated": False},
    {"title": "Champagne Gold Bauble Set", "description": "Forty shatterproof baubles in champagne gold and platinum.", "price": 85.0, "category": "decorations", "color": ["champagne-gold", "platinum"], "decorated": False},
    {"title": "Velvet Red Ribbon", "description": "Ten metres of wired velvet ribbon.", "price": 25.0, "category": "ribbons", "color": ["red"], "decorated": False},
    {"title": "Winter Table Centrepiece", "description": "Pine, berries and candles arranged for a dining table.", "price": 120.0, "category": "centrepieces", "color": ["white", "silver"], "decorated": True},
]


class SeedResponse(BaseModel):
    products: int
    delivery_configurations: int


@router.post("/seed", response_model=SeedResponse)
async def seed(db=Depends(get_store)):
    # Insert only into empty collections
    inserted_products = 0
    if await db.count_documents("products") == 0:
        for p in SEED_PRODUCTS:
            await db.create_document("products", Product(**p).model_dump(exclude={"id"}))
        inserted_products = len(SEED_PRODUCTS)
    inserted_configs = 0
    if await db.count_documents("delivery_configurations") == 0:
        await db.create_document(
            "delivery_configurations", DEFAULT_DELIVERY_CONFIGURATION.model_dump(mode="json", exclude={"id"})
        )
        inserted_configs = 1
    return SeedResponse(products=inserted_products, delivery_configurations=inserted_configs)
