import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from bson.objectid import ObjectId
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
import database
from database import StoreUnavailable, create_document, get_db, get_documents, to_object_id, utcnow
from lifecycle import (
    CustomerStatus,
    InvalidTransition,
    QuoteStatus,
    RecordNotFound,
    parse_customer_status,
    parse_quote_status,
    quote_status_spellings,
    transition_customer,
    transition_quote,
)
from logging_config import configure_logging, get_logger
from schemas import Customer, Message, Package, Quote, QuoteItem
from sweep import QuotationSweep

configure_logging()
logger = get_logger(__name__)

STARTED_AT = time.time()
RECENT_LIMIT = 5


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("server_starting", environment=config.ENVIRONMENT)

    if database.db is None:
        database.connect()
    if database.db is not None:
        try:
            database.ensure_indexes()
        except StoreUnavailable as e:
            logger.error("index_creation_failed", error=str(e))

    app.state.sweep = QuotationSweep()
    if config.SWEEP_ENABLED:
        app.state.sweep.start()

    yield

    logger.info("server_stopping")
    await app.state.sweep.stop()
    database.close()


app = FastAPI(title="Events Rental API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if config.IS_DEVELOPMENT else config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With", "Accept"],
    expose_headers=["Content-Range", "X-Total-Count"],
    max_age=600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 1),
            client=request.client.host if request.client else None,
        )


# --- Error handling ---
def _error(status_code: int, code: str, message: Any, error_id: Optional[str] = None) -> JSONResponse:
    error: Dict[str, Any] = {"code": code, "message": message}
    if error_id:
        error["id"] = error_id
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


HTTP_ERROR_CODES = {400: "BAD_REQUEST", 403: "FORBIDDEN", 404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return _error(exc.status_code, HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"), exc.detail)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [{"loc": list(err.get("loc", ())), "msg": err.get("msg")} for err in exc.errors()]
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": {"code": "VALIDATION_ERROR", "message": "Invalid request", "details": details}},
    )


@app.exception_handler(InvalidTransition)
async def invalid_transition_handler(request: Request, exc: InvalidTransition):
    return _error(400, "INVALID_TRANSITION", str(exc))


@app.exception_handler(RecordNotFound)
async def record_not_found_handler(request: Request, exc: RecordNotFound):
    return _error(404, "NOT_FOUND", str(exc))


@app.exception_handler(StoreUnavailable)
@app.exception_handler(PyMongoError)
async def store_unavailable_handler(request: Request, exc: Exception):
    logger.error("store_unavailable", path=request.url.path, error=str(exc))
    return _error(500, "STORE_UNAVAILABLE", "Database unavailable")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    error_id = f"err_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"
    logger.error("unhandled_exception", error_id=error_id, path=request.url.path, exc_info=exc)
    message = str(exc) if config.IS_DEVELOPMENT else "An unexpected error occurred"
    return _error(500, "INTERNAL_SERVER_ERROR", message, error_id=error_id)


# --- Helpers ---
def _oid(value: str) -> ObjectId:
    try:
        return to_object_id(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid id") from None


def _serialize(doc: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    return out


def _find_or_404(collection_name: str, doc_id: str) -> Dict[str, Any]:
    doc = get_db()[collection_name].find_one({"_id": _oid(doc_id)})
    if doc is None:
        raise HTTPException(status_code=404, detail=f"{collection_name.capitalize()} not found")
    return doc


def _delete_or_404(collection_name: str, doc_id: str) -> Dict[str, Any]:
    res = get_db()[collection_name].delete_one({"_id": _oid(doc_id)})
    if not res.deleted_count:
        raise HTTPException(status_code=404, detail=f"{collection_name.capitalize()} not found")
    return {"ok": True, "deleted": res.deleted_count}


def _status_filter(value: Optional[str], parse) -> Dict[str, Any]:
    if not value:
        return {}
    try:
        return {"status": parse(value).value}
    except InvalidTransition as e:
        raise HTTPException(status_code=400, detail=str(e)) from None


# --- API models ---
# The only Package field that may be cleared with null
NULLABLE_PACKAGE_FIELDS = {"image_url"}


class PackageUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    description: Optional[str] = None
    category: Optional[str] = None
    base_price: Optional[float] = Field(None, ge=0)
    price_unit: Optional[str] = None
    features: Optional[List[str]] = None
    image_url: Optional[str] = None
    is_active: Optional[bool] = None
    is_popular: Optional[bool] = None


class CreateQuoteRequest(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    phone: Optional[str] = None
    eventType: str
    eventDate: Optional[str] = None
    location: Optional[str] = None
    guestCount: Optional[int] = Field(None, ge=0)
    packageId: Optional[str] = None
    items: List[QuoteItem] = Field(default_factory=list)
    notes: Optional[str] = None


class QuoteResponse(BaseModel):
    id: str
    status: str
    total: float
    customerId: str


class ContactRequest(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    phone: Optional[str] = None
    subject: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)


class StatusUpdateRequest(BaseModel):
    status: str


class MarkReadRequest(BaseModel):
    isRead: bool = True


# --- Health ---
@app.get("/")
def read_root():
    return {"message": "Events Rental API"}


@app.get("/api/health")
def health():
    return {
        "status": "ok",
        "message": "API is running",
        "timestamp": utcnow().isoformat() + "Z",
        "uptime": round(time.time() - STARTED_AT, 3),
        "environment": config.ENVIRONMENT,
    }


@app.get("/api/health/db")
def health_db():
    response = {
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if config.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database.db is None:
        return response
    response["connection_status"] = "Connected"
    try:
        response["collections"] = database.db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
    except PyMongoError as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# --- Packages ---
@app.get("/api/packages")
def list_packages(category: Optional[str] = None, active: Optional[bool] = None):
    filter_dict: Dict[str, Any] = {}
    if category:
        filter_dict["category"] = category.lower()
    if active is not None:
        filter_dict["is_active"] = active
    return [_serialize(doc) for doc in get_documents("package", filter_dict)]


@app.get("/api/packages/featured")
def featured_packages():
    docs = get_documents("package", {"is_active": True, "is_popular": True})
    return [_serialize(doc) for doc in docs]


@app.get("/api/packages/{package_id}")
def get_package(package_id: str):
    return _serialize(_find_or_404("package", package_id))


@app.post("/api/packages", status_code=201)
def create_package(payload: Package):
    payload.category = payload.category.lower()
    package_id = create_document("package", payload)
    return _serialize(_find_or_404("package", package_id))


@app.put("/api/packages/{package_id}")
def update_package(package_id: str, payload: PackageUpdateRequest):
    updates = payload.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No changes provided")
    nulls = sorted(k for k, v in updates.items() if v is None and k not in NULLABLE_PACKAGE_FIELDS)
    if nulls:
        raise HTTPException(status_code=400, detail=f"Fields cannot be null: {', '.join(nulls)}")
    if updates.get("category"):
        updates["category"] = updates["category"].lower()
    updates["updated_at"] = utcnow()
    doc = get_db()["package"].find_one_and_update(
        {"_id": _oid(package_id)}, {"$set": updates}, return_document=ReturnDocument.AFTER
    )
    if doc is None:
        raise HTTPException(status_code=404, detail="Package not found")
    return _serialize(doc)


@app.delete("/api/packages/{package_id}")
def delete_package(package_id: str):
    return _delete_or_404("package", package_id)


def _toggle_package_flag(package_id: str, flag: str) -> Dict[str, Any]:
    doc = _find_or_404("package", package_id)
    updated = get_db()["package"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$set": {flag: not doc.get(flag, False), "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        raise HTTPException(status_code=404, detail="Package not found")
    return _serialize(updated)


@app.patch("/api/packages/{package_id}/toggle-active")
def toggle_package_active(package_id: str):
    return _toggle_package_flag(package_id, "is_active")


@app.patch("/api/packages/{package_id}/toggle-popular")
def toggle_package_popular(package_id: str):
    return _toggle_package_flag(package_id, "is_popular")


# --- Quotes ---
@app.post("/api/quotes", response_model=QuoteResponse, status_code=201)
def create_quote(payload: CreateQuoteRequest):
    db = get_db()
    email = str(payload.email).lower()

    items = list(payload.items)
    if payload.packageId:
        package = db["package"].find_one({"_id": _oid(payload.packageId)})
        if package is None:
            raise HTTPException(status_code=400, detail="Unknown package")
        if not items:
            items = [QuoteItem(name=package["name"], quantity=1, unit_price=package.get("base_price", 0))]

    customer = db["customer"].find_one({"email": email})
    if customer is None:
        customer_id = create_document(
            "customer", Customer(name=payload.name, email=email, phone=payload.phone)
        )
        logger.info("customer_created", customer_id=customer_id)
    else:
        customer_id = str(customer["_id"])

    doc = Quote(
        customer_id=customer_id,
        event_type=payload.eventType,
        event_date=payload.eventDate,
        location=payload.location,
        guest_count=payload.guestCount,
        package_id=payload.packageId,
        items=items,
        notes=payload.notes,
        total=round(sum(item.quantity * item.unit_price for item in items), 2),
    )
    quote_id = create_document("quote", doc)

    create_document("message", Message(
        name=payload.name,
        email=email,
        phone=payload.phone,
        subject=f"Quote request: {payload.eventType}",
        message=payload.notes or f"Quote {quote_id} for {payload.eventType} ({len(items)} item(s), total {doc.total})",
        source="quote",
    ))

    logger.info("quote_submitted", quote_id=quote_id, customer_id=customer_id, total=doc.total)
    return QuoteResponse(id=quote_id, status=doc.status, total=doc.total, customerId=customer_id)


@app.get("/api/quotes")
def list_quotes(status: Optional[str] = None, limit: int = Query(100, ge=1, le=500)):
    filter_dict = _status_filter(status, parse_quote_status)
    return [_serialize(doc) for doc in get_documents("quote", filter_dict, limit=limit)]


@app.get("/api/quotes/{quote_id}")
def get_quote(quote_id: str):
    return _serialize(_find_or_404("quote", quote_id))


@app.patch("/api/quotes/{quote_id}/status")
def update_quote_status(quote_id: str, payload: StatusUpdateRequest):
    quote = _find_or_404("quote", quote_id)
    return _serialize(transition_quote(get_db(), quote, payload.status))


@app.delete("/api/quotes/{quote_id}")
def delete_quote(quote_id: str):
    return _delete_or_404("quote", quote_id)


# --- Customers ---
@app.get("/api/admin/customers")
def list_customers(status: Optional[str] = None, limit: int = Query(100, ge=1, le=500)):
    filter_dict = _status_filter(status, parse_customer_status)
    return [_serialize(doc) for doc in get_documents("customer", filter_dict, limit=limit)]


@app.get("/api/admin/customers/{customer_id}")
def get_customer(customer_id: str):
    customer = _serialize(_find_or_404("customer", customer_id))
    customer["quotes"] = [_serialize(doc) for doc in get_documents("quote", {"customer_id": customer["id"]})]
    return customer


@app.patch("/api/admin/customers/{customer_id}/status")
def update_customer_status(customer_id: str, payload: StatusUpdateRequest):
    customer = _find_or_404("customer", customer_id)
    return _serialize(transition_customer(get_db(), customer, payload.status))


@app.delete("/api/admin/customers/{customer_id}")
def delete_customer(customer_id: str):
    return _delete_or_404("customer", customer_id)


# --- Messages ---
@app.post("/api/contact", status_code=201)
def submit_contact(payload: ContactRequest):
    message_id = create_document("message", Message(
        name=payload.name,
        email=str(payload.email).lower(),
        phone=payload.phone,
        subject=payload.subject,
        message=payload.message,
    ))
    logger.info("contact_message_received", message_id=message_id)
    return {"success": True, "id": message_id}


@app.get("/api/admin/messages")
def list_messages(unread: bool = False, limit: int = Query(100, ge=1, le=500)):
    filter_dict = {"is_read": False} if unread else {}
    return [_serialize(doc) for doc in get_documents("message", filter_dict, limit=limit)]


@app.patch("/api/admin/messages/{message_id}/read")
def mark_message_read(message_id: str, payload: Optional[MarkReadRequest] = None):
    is_read = payload.isRead if payload else True
    doc = get_db()["message"].find_one_and_update(
        {"_id": _oid(message_id)},
        {"$set": {"is_read": is_read, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise HTTPException(status_code=404, detail="Message not found")
    return _serialize(doc)


@app.delete("/api/admin/messages/{message_id}")
def delete_message(message_id: str):
    return _delete_or_404("message", message_id)


# --- Dashboard ---
@app.get("/api/admin/dashboard/stats")
def dashboard_stats():
    db = get_db()
    quotes = db["quote"]
    approved = {"$in": quote_status_spellings(QuoteStatus.APPROVED)}

    revenue = list(quotes.aggregate([
        {"$match": {"status": approved}},
        {"$group": {"_id": None, "total": {"$sum": "$total"}}},
    ]))

    return {
        "stats": {
            "totalQuotes": quotes.count_documents({}),
            "pendingQuotes": quotes.count_documents({"status": QuoteStatus.PENDING.value}),
            "approvedQuotes": quotes.count_documents({"status": approved}),
            "rejectedQuotes": quotes.count_documents({"status": {"$in": quote_status_spellings(QuoteStatus.REJECTED)}}),
            "totalCustomers": db["customer"].count_documents({}),
            "confirmedCustomers": db["customer"].count_documents({"status": CustomerStatus.CONFIRMED.value}),
            "totalMessages": db["message"].count_documents({}),
            "unreadMessages": db["message"].count_documents({"is_read": False}),
            "totalRevenue": revenue[0]["total"] if revenue else 0,
        },
        "recent": {
            "quotes": [_serialize(doc) for doc in get_documents("quote", limit=RECENT_LIMIT)],
            "customers": [_serialize(doc) for doc in get_documents("customer", limit=RECENT_LIMIT)],
            "messages": [_serialize(doc) for doc in get_documents("message", limit=RECENT_LIMIT)],
        },
    }


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=config.PORT, timeout_graceful_shutdown=5)
