import logging
import os
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .admin import router as admin_router
from .catalog import tree_options_payload
from .checkout import EventSeed, GiftCardSeed, ProductSeed, SessionRegistry, start_checkout
from .config import settings
from .database import get_blob_store, get_store
from .delivery import load_delivery_configuration, resolve_delivery_fee
from .discounts import validate_discount
from .errors import CheckoutRejection, DataStoreError, OrderIntegrityError, PaymentGatewayError
from .payments import StripeGateway
from .schemas import CustomerDetailsInput, EventService, GiftCard, Inquiry, Product, TreeOptions

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Twinkle Jingle API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(admin_router)

_gateway = StripeGateway(settings.STRIPE_SECRET_KEY, settings.PAYMENT_CURRENCY)
_registry = SessionRegistry()


# ---------------------------------------------------------------------------------
# Dependencies (overridden in tests)
# ---------------------------------------------------------------------------------

def get_gateway():
    return _gateway


def get_registry():
    return _registry


def get_holidays() -> list[date]:
    return settings.PUBLIC_HOLIDAYS


# ---------------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------------

@app.exception_handler(CheckoutRejection)
async def checkout_rejection_handler(request, exc: CheckoutRejection):
    body = {"detail": exc.reason}
    kind = getattr(exc, "kind", None)
    if kind is not None:
        body["kind"] = kind.value
    return JSONResponse(status_code=400, content=body)


@app.exception_handler(DataStoreError)
async def data_store_error_handler(request, exc: DataStoreError):
    logger.error("Data store error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Service temporarily unavailable. Please try again."})


@app.exception_handler(PaymentGatewayError)
async def payment_gateway_error_handler(request, exc: PaymentGatewayError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(OrderIntegrityError)
async def order_integrity_error_handler(request, exc: OrderIntegrityError):
    logger.error("Order integrity violation: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "Order could not be created"})


# ---------------------------------------------------------------------------------
# Health and info
# ---------------------------------------------------------------------------------

@app.get("/")
def read_root():
    return {"message": "Twinkle Jingle API is running"}


@app.get("/test")
async def test_database(db=Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        collections = await db.collection_names()
        response["collections"] = collections[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# ---------------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------------

@app.get("/api/products")
async def list_products(
    category: Optional[str] = None,
    q: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    db=Depends(get_store),
):
    filter_dict = {}
    if category:
        filter_dict["category"] = category
    if q:
        filter_dict["title"] = {"$regex": q, "$options": "i"}
    return await db.get_documents("products", filter_dict, limit, sort=[("created_at", -1)])


@app.get("/api/products/{product_id}")
async def get_product(product_id: str, db=Depends(get_store)):
    doc = await db.find_document("products", {"id": product_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return doc


@app.get("/api/tree-options")
def get_tree_options():
    return tree_options_payload()


@app.get("/api/events-services")
async def list_events_services(category: Optional[str] = None, db=Depends(get_store)):
    filter_dict = {"category": category} if category else {}
    return await db.get_documents("events_services", filter_dict)


@app.get("/api/events-services/{service_id}")
async def get_event_service(service_id: str, db=Depends(get_store)):
    doc = await db.find_document("events_services", {"id": service_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Event service not found")
    return doc


@app.post("/api/inquiries", status_code=201)
async def create_inquiry(payload: Inquiry, db=Depends(get_store)):
    doc = await db.create_document("inquiries", payload.model_dump())
    return {"id": doc["id"]}


@app.get("/api/files/{file_id}")
async def get_file(file_id: str, blobs=Depends(get_blob_store)):
    found = await blobs.read(file_id)
    if found is None:
        raise HTTPException(status_code=404, detail="File not found")
    data, content_type = found
    return Response(content=data, media_type=content_type)


# ---------------------------------------------------------------------------------
# Delivery and discounts
# ---------------------------------------------------------------------------------

class DeliverySelection(BaseModel):
    zone_id: Optional[str] = None
    postal_code: Optional[str] = None
    distance_km: Optional[float] = Field(None, ge=0)
    area: Optional[str] = None


class DiscountCheck(BaseModel):
    code: str
    subtotal: float = Field(..., ge=0)


@app.get("/api/delivery/configuration")
async def get_delivery_configuration(db=Depends(get_store)):
    config = await load_delivery_configuration(db)
    return config.model_dump(mode="json")


@app.post("/api/delivery/quote")
async def quote_delivery(payload: DeliverySelection, db=Depends(get_store)):
    config = await load_delivery_configuration(db)
    quote = resolve_delivery_fee(
        config, zone_id=payload.zone_id, postal_code=payload.postal_code, distance_km=payload.distance_km
    )
    return quote.to_dict()


@app.post("/api/discounts/validate")
async def check_discount_code(payload: DiscountCheck, db=Depends(get_store)):
    applied = await validate_discount(db, payload.code, payload.subtotal)
    return applied.to_dict()


# ---------------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------------

class CheckoutStart(BaseModel):
    product_id: Optional[str] = None
    tree_options: Optional[TreeOptions] = None
    gift_card: Optional[GiftCard] = None
    event_service_id: Optional[str] = None


class ScheduleInput(BaseModel):
    rental_period: Optional[int] = None
    decor_level: Optional[int] = None
    event_size: Optional[str] = None
    men_power: Optional[int] = None
    installation_date: Optional[date] = None
    teardown_date: Optional[date] = None


class AddOnSelection(BaseModel):
    addon_ids: list[str] = Field(default_factory=list)


class DiscountInput(BaseModel):
    code: str


class PaymentInput(BaseModel):
    payment_method: Optional[str] = None


def _session_or_404(session_id: str, registry: SessionRegistry):
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Checkout session not found")
    return session


def _respond(session, ok: bool):
    if not ok:
        raise HTTPException(status_code=400, detail=session.error)
    return session.snapshot()


async def _build_seed(payload: CheckoutStart, db):
    chosen = [x for x in (payload.product_id, payload.gift_card, payload.event_service_id) if x]
    if len(chosen) != 1:
        raise HTTPException(status_code=400, detail="Choose exactly one of a product, a gift card or an event service")
    if payload.gift_card is not None:
        return GiftCardSeed(gift_card=payload.gift_card)
    if payload.event_service_id:
        doc = await db.find_document("events_services", {"id": payload.event_service_id})
        if not doc:
            raise HTTPException(status_code=404, detail="Event service not found")
        return EventSeed(event_service=EventService(**doc))
    # prices always come from the catalog, never from the client
    doc = await db.find_document("products", {"id": payload.product_id})
    if not doc:
        raise HTTPException(status_code=404, detail="Product not found")
    return ProductSeed(product=Product(**doc), tree_options=payload.tree_options)


@app.post("/api/checkout", status_code=201)
async def create_checkout(
    payload: CheckoutStart,
    db=Depends(get_store),
    gateway=Depends(get_gateway),
    registry: SessionRegistry = Depends(get_registry),
    holidays: list[date] = Depends(get_holidays),
):
    seed = await _build_seed(payload, db)
    session = await start_checkout(seed, db, gateway, holidays)
    registry.add(session)
    return session.snapshot()


@app.get("/api/checkout/{session_id}")
async def get_checkout(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    return _session_or_404(session_id, registry).snapshot()


@app.put("/api/checkout/{session_id}/schedule")
async def update_schedule(session_id: str, payload: ScheduleInput, registry: SessionRegistry = Depends(get_registry)):
    session = _session_or_404(session_id, registry)
    changes = payload.model_dump(include=payload.model_fields_set)
    return _respond(session, session.set_schedule(**changes))


@app.put("/api/checkout/{session_id}/details")
async def update_details(session_id: str, payload: CustomerDetailsInput, registry: SessionRegistry = Depends(get_registry)):
    session = _session_or_404(session_id, registry)
    return _respond(session, session.set_customer_details(payload))


@app.put("/api/checkout/{session_id}/delivery")
async def update_delivery(session_id: str, payload: DeliverySelection, registry: SessionRegistry = Depends(get_registry)):
    session = _session_or_404(session_id, registry)
    ok = session.select_delivery(
        zone_id=payload.zone_id, postal_code=payload.postal_code, distance_km=payload.distance_km, area=payload.area
    )
    return _respond(session, ok)


@app.put("/api/checkout/{session_id}/addons")
async def update_addons(session_id: str, payload: AddOnSelection, registry: SessionRegistry = Depends(get_registry)):
    session = _session_or_404(session_id, registry)
    return _respond(session, session.set_addons(payload.addon_ids))


@app.post("/api/checkout/{session_id}/discount")
async def apply_discount(session_id: str, payload: DiscountInput, registry: SessionRegistry = Depends(get_registry)):
    session = _session_or_404(session_id, registry)
    return _respond(session, await session.apply_discount(payload.code))


@app.delete("/api/checkout/{session_id}/discount")
async def remove_discount(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = _session_or_404(session_id, registry)
    return _respond(session, session.remove_discount())


@app.post("/api/checkout/{session_id}/advance")
async def advance_checkout(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = _session_or_404(session_id, registry)
    return _respond(session, await session.advance())


@app.post("/api/checkout/{session_id}/back")
async def back_checkout(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = _session_or_404(session_id, registry)
    return _respond(session, session.back())


@app.post("/api/checkout/{session_id}/payment-intent")
async def create_payment_intent(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    session = _session_or_404(session_id, registry)
    intent = await session.create_payment_intent()
    if intent is None:
        raise HTTPException(status_code=400, detail=session.error)
    return {"client_secret": intent.client_secret, "amount_cents": intent.amount_cents}


@app.post("/api/checkout/{session_id}/pay")
async def pay_checkout(session_id: str, payload: PaymentInput, registry: SessionRegistry = Depends(get_registry)):
    session = _session_or_404(session_id, registry)
    return _respond(session, await session.submit_payment(payload.payment_method))


@app.delete("/api/checkout/{session_id}")
async def abandon_checkout(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    if registry.discard(session_id) is None:
        raise HTTPException(status_code=404, detail="Checkout session not found")
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
