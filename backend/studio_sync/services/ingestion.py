"""Idempotent order upsert keyed on the storefront order number.

The storefront delivers at least once, so the same `commande` may arrive
several times. The first delivery creates the order and its items in one
transaction; later deliveries only touch the payment state, the note and
`updated_at`, leaving operator edits made on the board in place.
"""
import logging
from typing import Any, Dict, NamedTuple, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from studio_sync.errors import PersistenceError
from studio_sync.models.order import Order, OrderItem, serialize_order, utcnow
from studio_sync.services import notifier as notifications
from studio_sync.services.normalizer import CanonicalOrder, PaymentState

logger = logging.getLogger(__name__)


class UpsertResult(NamedTuple):
    order: Dict[str, Any]
    created: bool


def find_by_reference(session: Session, reference: str) -> Optional[Order]:
    return session.exec(select(Order).where(Order.external_reference == reference)).first()


def build_order(canonical: CanonicalOrder) -> Order:
    order = Order(
        external_reference=canonical.external_reference,
        customer_name=canonical.customer_name,
        customer_first_name=canonical.customer_first_name,
        customer_phone=canonical.customer_phone,
        customer_address=canonical.customer_address,
        deadline=canonical.deadline,
        payment_state=(canonical.payment_state or PaymentState.PENDING).value,
        total_amount=canonical.total_amount,
        notes=canonical.freeform_note,
    )
    order.items = [
        OrderItem(position=position, **item.model_dump())
        for position, item in enumerate(canonical.line_items)
    ]
    return order


def _apply_redelivery(session: Session, order: Order, canonical: CanonicalOrder) -> Order:
    # restricted field set: customer, totals and items belong to the operators now
    # a delivery without paiement.statut leaves the stored payment state alone
    if canonical.payment_state is not None:
        order.payment_state = canonical.payment_state.value
    if canonical.freeform_note:
        order.notes = canonical.freeform_note
    order.updated_at = utcnow()
    session.add(order)
    session.commit()
    session.refresh(order)
    return order


def upsert_order(
    session: Session,
    canonical: CanonicalOrder,
    notifier: Optional[notifications.ChangeNotifier] = None,
) -> UpsertResult:
    """Create or update the order for canonical.external_reference.

    Emits `order-created` after a successful create. Raises PersistenceError on
    any database failure, after rolling back.
    """
    bus = notifier or notifications.notifier
    reference = canonical.external_reference
    try:
        existing = find_by_reference(session, reference)
        if existing is not None:
            order = _apply_redelivery(session, existing, canonical)
            logger.info("Order re-delivered commande=%s id=%s payment=%s", reference, order.id, order.payment_state)
            return UpsertResult(serialize_order(order), False)

        order = build_order(canonical)
        session.add(order)
        try:
            session.commit()
        except IntegrityError:
            # another request created the same commande between lookup and insert
            session.rollback()
            existing = find_by_reference(session, reference)
            if existing is None:
                raise
            logger.warning("Concurrent ingestion of commande=%s resolved as update", reference)
            order = _apply_redelivery(session, existing, canonical)
            return UpsertResult(serialize_order(order), False)
        session.refresh(order)
        payload = serialize_order(order)
    except SQLAlchemyError as e:
        session.rollback()
        logger.exception("Failed to persist commande=%s: %s", reference, e)
        raise PersistenceError(f"failed to persist order {reference}") from e

    logger.info("Created order id=%s commande=%s items=%d", payload["id"], reference, len(payload["items"]))
    bus.emit(notifications.ORDER_CREATED, payload)
    return UpsertResult(payload, True)
