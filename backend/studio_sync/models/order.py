import secrets
import string
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, Relationship, SQLModel

_ID_ALPHABET = string.digits + string.ascii_lowercase


class OrderStatus(str, Enum):
    """Kanban columns of the production board, in board order."""

    COMMANDE_A_TRAITER = "COMMANDE_A_TRAITER"
    COMMANDE_EN_ATTENTE = "COMMANDE_EN_ATTENTE"
    COMMANDE_A_PREPARER = "COMMANDE_A_PREPARER"
    MAQUETTE_A_FAIRE = "MAQUETTE_A_FAIRE"
    PRT_A_FAIRE = "PRT_A_FAIRE"
    EN_ATTENTE_VALIDATION = "EN_ATTENTE_VALIDATION"
    EN_COURS_IMPRESSION = "EN_COURS_IMPRESSION"
    PRESSAGE_A_FAIRE = "PRESSAGE_A_FAIRE"
    CLIENT_A_CONTACTER = "CLIENT_A_CONTACTER"
    CLIENT_PREVENU = "CLIENT_PREVENU"
    ARCHIVES = "ARCHIVES"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


def new_id() -> str:
    """Server-assigned id: 'c' + epoch millis + 7 random base36 chars."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"c{int(time.time() * 1000)}{suffix}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: str = Field(default_factory=new_id, primary_key=True)
    external_reference: str = Field(index=True, unique=True, max_length=128)
    customer_name: str
    customer_first_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    status: str = Field(default=OrderStatus.COMMANDE_A_TRAITER.value, index=True)
    payment_state: str = Field(default=PaymentStatus.PENDING.value)
    total_amount: float = 0.0
    currency: str = "EUR"
    notes: Optional[str] = None
    deadline: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    items: List["OrderItem"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={
            "cascade": "all, delete-orphan",
            "order_by": "OrderItem.position",
            "lazy": "selectin",
        },
    )


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"

    id: str = Field(default_factory=new_id, primary_key=True)
    order_id: str = Field(foreign_key="orders.id", index=True)
    position: int = 0

    family: Optional[str] = None
    color: Optional[str] = None
    print_size: Optional[str] = None
    logo_position: Optional[str] = None
    reference: Optional[str] = None
    size: Optional[str] = None
    collection: Optional[str] = None
    front_image: Optional[str] = None
    back_image: Optional[str] = None
    client_note: Optional[str] = None
    # PRT production sub-order
    prt_ref: Optional[str] = None
    prt_size: Optional[str] = None
    prt_quantity: Optional[int] = None
    unit_price: float = 0.0

    order: Optional[Order] = Relationship(back_populates="items")


class PersonNote(SQLModel, table=True):
    __tablename__ = "person_notes"

    id: Optional[int] = Field(default=None, primary_key=True)
    person: str = Field(index=True, unique=True, max_length=32)
    content: str = ""
    todos: Optional[list] = Field(default=None, sa_column=Column(JSON))
    updated_at: datetime = Field(default_factory=utcnow)


def visual_kind(value: Optional[str]) -> Optional[str]:
    """'image' for http(s)/data URLs, 'code' for production codes, None when empty."""
    if not value:
        return None
    if value.startswith("http") or value.startswith("data:"):
        return "image"
    return "code"


def prt_active(item: OrderItem) -> bool:
    return any(v not in (None, "") for v in (item.prt_ref, item.prt_size, item.prt_quantity))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_item(item: OrderItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "order_id": item.order_id,
        "position": item.position,
        "family": item.family,
        "color": item.color,
        "print_size": item.print_size,
        "logo_position": item.logo_position,
        "reference": item.reference,
        "size": item.size,
        "collection": item.collection,
        "front_image": item.front_image,
        "front_image_kind": visual_kind(item.front_image),
        "back_image": item.back_image,
        "back_image_kind": visual_kind(item.back_image),
        "client_note": item.client_note,
        "prt_ref": item.prt_ref,
        "prt_size": item.prt_size,
        "prt_quantity": item.prt_quantity,
        "unit_price": item.unit_price,
    }


def serialize_order(order: Order) -> Dict[str, Any]:
    items = list(order.items or [])
    return {
        "id": order.id,
        "external_reference": order.external_reference,
        "customer_name": order.customer_name,
        "customer_first_name": order.customer_first_name,
        "customer_phone": order.customer_phone,
        "customer_address": order.customer_address,
        "status": order.status,
        "payment_state": order.payment_state,
        "total_amount": order.total_amount,
        "currency": order.currency,
        "notes": order.notes,
        "deadline": _iso(order.deadline),
        "has_prt": any(prt_active(i) for i in items),
        "items": [serialize_item(i) for i in items],
        "created_at": _iso(order.created_at),
        "updated_at": _iso(order.updated_at),
    }


def serialize_note(note: PersonNote) -> Dict[str, Any]:
    return {
        "person": note.person,
        "content": note.content,
        "todos": note.todos or [],
        "updated_at": _iso(note.updated_at),
    }
