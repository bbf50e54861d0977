from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional
from fastapi import APIRouter, HTTPException
from studio_sync.db.session import get_session
from studio_sync.models.order import Order, OrderStatus, PaymentStatus
from sqlmodel import select
import logging

logger = logging.getLogger(__name__)
router = APIRouter()


def compute_summary(orders: Iterable[Order], today: Optional[datetime] = None) -> Dict[str, Any]:
    """Header counters of the dashboard.

    pending = still in COMMANDE_A_TRAITER, shipped = customer notified (CLIENT_PREVENU).
    """
    today = (today or datetime.now(timezone.utc)).date()
    summary = {
        "total_orders": 0,
        "revenue": 0.0,
        "pending": 0,
        "shipped": 0,
        "paid": 0,
        "today_orders": 0,
        "today_revenue": 0.0,
    }
    for o in orders:
        total = o.total_amount or 0
        summary["total_orders"] += 1
        summary["revenue"] += total
        if o.status == OrderStatus.COMMANDE_A_TRAITER.value:
            summary["pending"] += 1
        elif o.status == OrderStatus.CLIENT_PREVENU.value:
            summary["shipped"] += 1
        if o.payment_state == PaymentStatus.PAID.value:
            summary["paid"] += 1
        if o.created_at is not None and o.created_at.date() == today:
            summary["today_orders"] += 1
            summary["today_revenue"] += total
    summary["revenue"] = round(summary["revenue"], 2)
    summary["today_revenue"] = round(summary["today_revenue"], 2)
    return summary


@router.get("/summary")
def summary():
    session = get_session()
    try:
        rows = session.exec(select(Order)).all()
        return compute_summary(rows)
    except Exception as e:
        logger.exception("Failed to compute summary: %s", e)
        raise HTTPException(status_code=500, detail="Failed to compute dashboard summary")
    finally:
        session.close()


@router.get("/stats")
def stats():
    session = get_session()
    try:
        rows = session.exec(select(Order)).all()
        by_status: Dict[str, int] = {s.value: 0 for s in OrderStatus}
        by_payment: Dict[str, int] = {}
        for o in rows:
            by_status[o.status or "unknown"] = by_status.get(o.status or "unknown", 0) + 1
            by_payment[o.payment_state] = by_payment.get(o.payment_state, 0) + 1
        return {"by_status": by_status, "by_payment": by_payment}
    except Exception as e:
        logger.exception("Failed to compute stats: %s", e)
        raise HTTPException(status_code=500, detail="Failed to compute dashboard stats")
    finally:
        session.close()
