import logging
import time
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select
from starlette.concurrency import run_in_threadpool

from studio_sync.db.session import get_session
from studio_sync.errors import PayloadValidationError, PersistenceError
from studio_sync.models.order import Order, OrderStatus, PaymentStatus, serialize_order, utcnow
from studio_sync.services.auth import cors_headers, verify_webhook_secret
from studio_sync.services.ingestion import UpsertResult, upsert_order
from studio_sync.services.live_sync import stream_response
from studio_sync.services.normalizer import CanonicalLineItem, CanonicalOrder, PayloadShape, normalize_shape
from studio_sync.services.notifier import ORDER_CREATED

logger = logging.getLogger(__name__)
router = APIRouter()


class OrderPatch(BaseModel):
    status: Optional[str] = None
    payment_state: Optional[str] = None
    notes: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    # operators fix the DTF film size of the first article from the card
    first_item_print_size: Optional[str] = None


def _persist(canonical: CanonicalOrder) -> UpsertResult:
    session = get_session()
    try:
        return upsert_order(session, canonical)
    finally:
        session.close()


async def _ingest(request: Request, shape: PayloadShape) -> JSONResponse:
    cors = cors_headers(request.headers.get("origin"))
    if not verify_webhook_secret(request.headers):
        return JSONResponse({"error": "Unauthorized: invalid webhook secret"}, status_code=401, headers=cors)

    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid JSON payload"}, status_code=400, headers=cors)

    try:
        canonical = normalize_shape(payload, shape)
    except PayloadValidationError as e:
        return JSONResponse({"error": "Invalid order payload", "issues": e.issues}, status_code=422, headers=cors)

    try:
        result = await run_in_threadpool(_persist, canonical)
    except PersistenceError:
        return JSONResponse({"error": "Failed to create order"}, status_code=500, headers=cors)

    return JSONResponse(
        {"success": True, "created": result.created, "order": result.order},
        status_code=201 if result.created else 200,
        headers=cors,
    )


@router.options("")
@router.options("/from-external")
async def ingestion_preflight(request: Request):
    return Response(status_code=204, headers=cors_headers(request.headers.get("origin")))


@router.post("")
async def receive_order(request: Request):
    """Storefront webhook, native payload shape."""
    logger.info("Webhook received shape=native")
    return await _ingest(request, PayloadShape.NATIVE)


@router.post("/from-external")
async def receive_external_order(request: Request):
    """Storefront webhook, external export shape (mapped, then validated like the native one)."""
    logger.info("Webhook received shape=external")
    return await _ingest(request, PayloadShape.EXTERNAL)


@router.get("")
def list_orders():
    """Full order list, newest first. Polling fallback and reconciliation source."""
    session = get_session()
    try:
        rows = session.exec(select(Order).order_by(Order.created_at.desc())).all()
        return {"orders": [serialize_order(o) for o in rows]}
    except SQLAlchemyError as e:
        logger.exception("Failed to list orders: %s", e)
        raise HTTPException(status_code=500, detail="Internal server error")
    finally:
        session.close()


@router.get("/stream")
async def orders_stream(request: Request):
    return stream_response(request, ORDER_CREATED)


@router.post("/validate")
async def validate_order(request: Request, shape: PayloadShape = PayloadShape.NATIVE):
    """Dry run of the normalizer: nothing is persisted or emitted."""
    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid JSON payload"}, status_code=400)
    try:
        canonical = normalize_shape(payload, shape)
    except PayloadValidationError as e:
        return JSONResponse({"valid": False, "issues": e.issues}, status_code=422)
    return {"valid": True, "order": canonical.model_dump(mode="json")}


@router.post("/test", status_code=201)
def create_test_order():
    """Sample order from the dashboard settings page, no secret needed."""
    canonical = CanonicalOrder(
        external_reference=f"TEST-{int(time.time() * 1000)}",
        customer_name="Dupont",
        customer_first_name="Marie",
        customer_phone="+33 6 12 34 56 78",
        total_amount=149.99,
        line_items=[
            CanonicalLineItem(family="T-Shirt", color="Blanc", print_size="A4", reference="H-001", size="L",
                              front_image="bea-16-av-AV", unit_price=49.99),
            CanonicalLineItem(family="Sweat", color="Noir", print_size="A3+5cm", reference="H-002", size="M",
                              front_image="https://example.com/visuel.png", prt_ref="PRT-12", unit_price=100.0),
        ],
    )
    try:
        result = _persist(canonical)
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Failed to create test order")
    return {"success": True, "order": result.order}


@router.get("/{order_id}")
def get_order(order_id: str):
    session = get_session()
    try:
        order = session.get(Order, order_id)
        if order is None:
            raise HTTPException(status_code=404, detail="Order not found")
        return {"order": serialize_order(order)}
    finally:
        session.close()


@router.patch("/{order_id}")
def update_order(order_id: str, upd: OrderPatch):
    """Operator edit from the board. Not restricted like webhook re-deliveries."""
    valid_statuses = {s.value for s in OrderStatus}
    valid_payments = {p.value for p in PaymentStatus}
    if upd.status and upd.status not in valid_statuses:
        return JSONResponse({"error": "Invalid order status"}, status_code=422)
    if upd.payment_state and upd.payment_state not in valid_payments:
        return JSONResponse({"error": "Invalid payment status"}, status_code=422)

    provided = upd.model_fields_set
    session = get_session()
    try:
        order = session.get(Order, order_id)
        if order is None:
            raise HTTPException(status_code=404, detail="Order not found")
        if upd.status:
            order.status = upd.status
        if upd.payment_state:
            order.payment_state = upd.payment_state
        if "notes" in provided:
            order.notes = upd.notes
        if upd.customer_name:
            order.customer_name = upd.customer_name
        if "customer_phone" in provided:
            order.customer_phone = upd.customer_phone
        if "first_item_print_size" in provided and order.items:
            first = order.items[0]
            first.print_size = upd.first_item_print_size
            session.add(first)
        order.updated_at = utcnow()
        session.add(order)
        session.commit()
        session.refresh(order)
        logger.info("Order edited id=%s fields=%s", order_id, sorted(provided))
        return {"success": True, "order": serialize_order(order)}
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Failed to update order id=%s: %s", order_id, e)
        raise HTTPException(status_code=500, detail="Internal server error")
    finally:
        session.close()


@router.delete("/{order_id}")
def delete_order(order_id: str):
    session = get_session()
    try:
        order = session.get(Order, order_id)
        if order is None:
            raise HTTPException(status_code=404, detail="Order not found")
        reference = order.external_reference
        session.delete(order)
        session.commit()
        logger.info("Order deleted id=%s commande=%s", order_id, reference)
        return {"success": True}
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Failed to delete order id=%s: %s", order_id, e)
        raise HTTPException(status_code=500, detail="Internal server error")
    finally:
        session.close()
