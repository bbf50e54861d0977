"""Storefront payload normalization.

Two payload shapes are accepted:

- NATIVE: the studio's own order format (`commande`, `nom`, nested `fiche`,
  `prt`, `prix`, `paiement`, optional `articles` for multi-item carts).
- EXTERNAL: the storefront's export format. It is first mapped onto the
  native shape by `map_external`, a pure renaming/coercion step, and then
  goes through the exact same validation.

Validation only looks at canonical values, so "who sent this" and "is this
order valid" stay separate concerns.
"""
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from studio_sync.errors import PayloadValidationError
from studio_sync.services.pricing import PriceEngine, coerce_amount, coerce_quantity

logger = logging.getLogger(__name__)

_PAID_TOKENS = {"OUI", "PAID"}

FICHE_FIELDS = ("visuelAvant", "visuelArriere", "tailleDTFAr", "typeProduit", "couleur", "positionLogo")
PRT_FIELDS = ("refPrt", "taillePrt", "quantite")


class PaymentState(str, Enum):
    PAID = "PAID"
    PENDING = "PENDING"


class PayloadShape(str, Enum):
    NATIVE = "native"
    EXTERNAL = "external"


class CanonicalLineItem(BaseModel):
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
    prt_ref: Optional[str] = None
    prt_size: Optional[str] = None
    prt_quantity: Optional[int] = None
    unit_price: float = 0.0

    @property
    def prt_active(self) -> bool:
        return any(v not in (None, "") for v in (self.prt_ref, self.prt_size, self.prt_quantity))


class CanonicalOrder(BaseModel):
    external_reference: str
    customer_name: str
    customer_first_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_address: Optional[str] = None
    deadline: Optional[datetime] = None
    # None when the payload carries no paiement.statut
    payment_state: Optional[PaymentState] = None
    total_amount: float = 0.0
    line_items: List[CanonicalLineItem] = Field(default_factory=list)
    freeform_note: Optional[str] = None


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        value = str(value)
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _number(value: Any) -> Optional[float]:
    """Numeric strings become numbers; absent or garbage values stay absent."""
    if value is None or value == "":
        return None
    amount = coerce_amount(value)
    if amount == 0 and not (isinstance(value, (int, float)) or str(value).strip() in ("0", "0.0")):
        return None
    return amount


def _has_values(data: Dict[str, Any], keys) -> bool:
    return any(data.get(k) not in (None, "") for k in keys)


def parse_payment_state(value: Any) -> PaymentState:
    token = _text(value)
    if token and token.upper() in _PAID_TOKENS:
        return PaymentState.PAID
    return PaymentState.PENDING


def parse_payment_field(paiement: Any) -> Optional[PaymentState]:
    """Payment state from a `paiement` block, None when no statut was sent."""
    statut = _dict(paiement).get("statut")
    if _text(statut) is None:
        return None
    return parse_payment_state(statut)


def parse_deadline(value: Any) -> Optional[datetime]:
    """ISO date or datetime; values without an offset are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = _text(value)
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            logger.debug("Ignoring unparseable deadline %r", value)
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _map_product_block(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map the per-product part (fiche, prt, prix) of an external record."""
    fiche = _dict(data.get("fiche"))
    prt = _dict(data.get("prt"))
    prix = _dict(data.get("prix"))
    mapped: Dict[str, Any] = {
        "reference": data.get("reference"),
        "taille": data.get("taille"),
        "collection": data.get("collection"),
        "note": data.get("note"),
        "fiche": {k: fiche.get(k) for k in FICHE_FIELDS},
        "prix": {
            "tshirt": _number(prix.get("tshirt")),
            "personnalisation": _number(prix.get("perso", prix.get("personnalisation"))),
        },
    }
    if _has_values(prt, ("refPrt", "taillePrt", "quantite", "type", "statutPrt")):
        mapped["prt"] = {
            "refPrt": prt.get("refPrt"),
            "taillePrt": prt.get("taillePrt"),
            "quantite": coerce_quantity(prt.get("quantite")),
        }
    return mapped


def map_external(data: Dict[str, Any]) -> Dict[str, Any]:
    """Rename and coerce an external-shape payload into the native shape.

    Pure: it never invents values, so a payload without `commande` or `nom`
    still fails validation afterwards.
    """
    if not isinstance(data, dict):
        return data
    statut = _text(_dict(data.get("paiement")).get("statut"))
    native = _map_product_block(data)
    native["prix"]["total"] = _number(_dict(data.get("prix")).get("total"))
    native.update({
        "commande": data.get("commande"),
        "nom": data.get("nom"),
        "prenom": data.get("prenom"),
        "telephone": data.get("telephone"),
        "adresse": data.get("adresse"),
        "limit": data.get("deadline", data.get("limit")),
    })
    if statut:
        native["paiement"] = {"statut": "OUI" if statut.upper() in _PAID_TOKENS else "NON"}
    articles = data.get("articles")
    if isinstance(articles, list):
        native["articles"] = [_map_product_block(_dict(a)) for a in articles]
    return native


class PayloadNormalizer:
    """Turns a native-shape payload into a CanonicalOrder or raises PayloadValidationError.

    Required (checked on canonical values): external_reference, customer_name,
    total_amount > 0. All failures are reported together.
    """

    def __init__(self, pricing: Optional[PriceEngine] = None):
        self.pricing = pricing or PriceEngine()

    def _add_issue(self, issues: List[Dict[str, str]], field: str, message: str) -> None:
        issue = {"field": field, "message": message}
        if issue not in issues:
            issues.append(issue)

    def _has_root_product(self, payload: Dict[str, Any]) -> bool:
        prix = _dict(payload.get("prix"))
        return (
            _has_values(_dict(payload.get("fiche")), FICHE_FIELDS)
            or _has_values(_dict(payload.get("prt")), PRT_FIELDS)
            or _has_values(payload, ("reference", "taille", "collection"))
            or _has_values(prix, (PriceEngine.BASE_KEY, PriceEngine.CUSTOMIZATION_KEY))
        )

    def _line_item(self, data: Dict[str, Any], with_note: bool) -> CanonicalLineItem:
        fiche = _dict(data.get("fiche"))
        prt = _dict(data.get("prt"))
        return CanonicalLineItem(
            family=_text(fiche.get("typeProduit")),
            color=_text(fiche.get("couleur")),
            print_size=_text(fiche.get("tailleDTFAr")),
            logo_position=_text(fiche.get("positionLogo")),
            reference=_text(data.get("reference")),
            size=_text(data.get("taille")),
            collection=_text(data.get("collection")),
            front_image=_text(fiche.get("visuelAvant")),
            back_image=_text(fiche.get("visuelArriere")),
            client_note=_text(data.get("note")) if with_note else None,
            prt_ref=_text(prt.get("refPrt")),
            prt_size=_text(prt.get("taillePrt")),
            prt_quantity=coerce_quantity(prt.get("quantite")),
            unit_price=self.pricing.unit_price(data.get("prix")),
        )

    def resolve_items(self, payload: Dict[str, Any], reference: Optional[str]) -> List[CanonicalLineItem]:
        articles = payload.get("articles")
        if isinstance(articles, list) and articles:
            return [self._line_item(_dict(a), with_note=True) for a in articles]
        if self._has_root_product(payload):
            return [self._line_item(payload, with_note=False)]
        # nothing describes a product: keep a placeholder so the card still renders
        return [CanonicalLineItem(reference=reference)]

    def normalize(self, payload: Any) -> CanonicalOrder:
        if not isinstance(payload, dict):
            raise PayloadValidationError([{"field": "body", "message": "must be a JSON object"}])

        reference = _text(payload.get("commande"))
        name = _text(payload.get("nom"))
        total = coerce_amount(_dict(payload.get("prix")).get("total"))

        issues: List[Dict[str, str]] = []
        if not reference:
            self._add_issue(issues, "external_reference", "required (commande)")
        if not name:
            self._add_issue(issues, "customer_name", "required (nom)")
        if total <= 0:
            self._add_issue(issues, "total_amount", "must be greater than 0 (prix.total)")
        if issues:
            logger.info("Rejected payload commande=%s issues=%s", reference, [i["field"] for i in issues])
            raise PayloadValidationError(issues)

        return CanonicalOrder(
            external_reference=reference,
            customer_name=name,
            customer_first_name=_text(payload.get("prenom")),
            customer_phone=_text(payload.get("telephone")),
            customer_address=_text(payload.get("adresse")),
            deadline=parse_deadline(payload.get("limit")),
            payment_state=parse_payment_field(payload.get("paiement")),
            total_amount=total,
            line_items=self.resolve_items(payload, reference),
            freeform_note=_text(payload.get("note")),
        )


_default = PayloadNormalizer()


def normalize(payload: Any) -> CanonicalOrder:
    return _default.normalize(payload)


def normalize_shape(payload: Any, shape: PayloadShape) -> CanonicalOrder:
    if shape is PayloadShape.EXTERNAL:
        payload = map_external(payload)
    return _default.normalize(payload)
