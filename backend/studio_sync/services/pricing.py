import math
from typing import Any, Dict, Optional


def coerce_amount(value: Any) -> float:
    """Lenient money parsing: numbers and numeric strings pass, anything else is 0.

    The storefront is not fully trusted, so malformed amounts never raise.
    Negative and non-finite values are also clamped to 0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        num = float(value)
    elif isinstance(value, str):
        txt = value.strip().replace(",", ".")
        if not txt:
            return 0.0
        try:
            num = float(txt)
        except ValueError:
            return 0.0
    else:
        return 0.0
    if not math.isfinite(num) or num < 0:
        return 0.0
    return num


def coerce_quantity(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value > 0 else None
    if isinstance(value, str):
        try:
            num = int(value.strip())
        except ValueError:
            return None
        return num if num > 0 else None
    return None


class PriceEngine:
    """Line pricing for garment orders.

    A line costs the blank garment (`tshirt`) plus its customization
    (`personnalisation`); either part may be absent.
    """

    BASE_KEY = "tshirt"
    CUSTOMIZATION_KEY = "personnalisation"

    def unit_price(self, prix: Optional[Dict[str, Any]]) -> float:
        prix = prix if isinstance(prix, dict) else {}
        base = coerce_amount(prix.get(self.BASE_KEY))
        custom = coerce_amount(prix.get(self.CUSTOMIZATION_KEY))
        return round(base + custom, 2)
