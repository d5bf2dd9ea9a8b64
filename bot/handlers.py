"""
Handlers — Ejecución de las acciones que pide el asistente.

Cada handler recibe (params, user_id, db, currency) y devuelve un
ActionResult; los formatters convierten los datos en texto para Telegram.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from bot.currency import CurrencyConverter
from bot.db_service import DBService

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_LIMIT = 10
MAX_CATALOG_LIMIT = 50
DEFAULT_END_REASON = "Usuario terminó la conversación"
GUARANTEE_FLOW_MARKER = "guarantee_registration"

DAY_NAMES = {
    0: "Domingo",
    1: "Lunes",
    2: "Martes",
    3: "Miércoles",
    4: "Jueves",
    5: "Viernes",
    6: "Sábado",
}

GUARANTEE_STATUS_LABELS = {
    "pending": "⏳ Pendiente de revisión",
    "in_review": "🔎 En revisión",
    "approved": "✅ Aprobada",
    "rejected": "❌ Rechazada",
}


@dataclass
class ActionResult:
    command: str
    success: bool
    data: Any = None
    error: Optional[str] = None


# Helpers


def _format_usd(amount: float) -> str:
    return f"${amount:,.2f}".replace(".00", "")


def _format_bs(amount: float) -> str:
    """Formato venezolano: 17.572,50 Bs"""
    text = f"{amount:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{text} Bs"


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    return float(value)


def _catalog_limit(value: Any) -> int:
    try:
        limit = int(value)
    except (TypeError, ValueError):
        return DEFAULT_CATALOG_LIMIT
    return max(1, min(MAX_CATALOG_LIMIT, limit))


#  ACCIONES


def handle_consult_catalog(
    params: Dict, user_id: int, db: DBService, currency: Optional[CurrencyConverter]
) -> ActionResult:
    """Productos filtrados por marca y rango de precio (USD)."""
    filters = params.get("filters") or {}
    brand = filters.get("brand") or params.get("brand")
    min_price = filters.get("min_price", filters.get("minPrice", params.get("min_price")))
    max_price = filters.get("max_price", filters.get("maxPrice", params.get("max_price")))

    try:
        min_price, max_price = _to_float(min_price), _to_float(max_price)
    except (TypeError, ValueError):
        return ActionResult("CONSULT_CATALOG", False, error="Filtro de precio inválido")

    products = db.get_products(
        brand=brand,
        min_price=min_price,
        max_price=max_price,
        limit=_catalog_limit(params.get("limit")),
    )
    if currency is not None:
        currency.enrich_products(products)

    logger.info(f"[{user_id}] Catálogo consultado: {len(products)} productos")
    return ActionResult("CONSULT_CATALOG", True, data={"products": products})


def handle_consult_guarantees(
    params: Dict, user_id: int, db: DBService, currency: Optional[CurrencyConverter]
) -> ActionResult:
    requested = params.get("user_id")
    if requested is None or requested == "":
        return ActionResult("CONSULT_GUARANTEES", False, error="user_id requerido")
    try:
        requested = int(requested)
    except (TypeError, ValueError):
        return ActionResult("CONSULT_GUARANTEES", False, error="user_id inválido")
    if requested != user_id:
        # Solo se consultan las garantías propias
        return ActionResult(
            "CONSULT_GUARANTEES", False, error="No autorizado para consultar ese usuario"
        )

    guarantees = db.get_user_guarantees(user_id)
    return ActionResult("CONSULT_GUARANTEES", True, data={"guarantees": guarantees})


def handle_register_guarantee(
    params: Dict, user_id: int, db: DBService, currency: Optional[CurrencyConverter]
) -> ActionResult:
    """Abre (o reutiliza) la conversación de seguimiento y pide iniciar el flujo."""
    active = db.get_active_conversation(user_id)
    if active is None:
        conversation = db.open_conversation(user_id, {"flow": GUARANTEE_FLOW_MARKER})
    else:
        data = dict(active["ai_session_data"], flow=GUARANTEE_FLOW_MARKER)
        db.update_ai_session_data(active["id"], data)
        conversation = active

    return ActionResult(
        "REGISTER_GUARANTEE",
        True,
        data={"conversation_id": conversation["id"], "flow_started": True},
    )


def handle_consult_schedule(
    params: Dict, user_id: int, db: DBService, currency: Optional[CurrencyConverter]
) -> ActionResult:
    return ActionResult("CONSULT_SCHEDULE", True, data={"schedules": db.get_schedules()})


def handle_send_geolocation(
    params: Dict, user_id: int, db: DBService, currency: Optional[CurrencyConverter]
) -> ActionResult:
    store = db.get_store_config()
    if store is None:
        return ActionResult(
            "SEND_GEOLOCATION", False, error="Configuración de tienda no encontrada"
        )
    return ActionResult("SEND_GEOLOCATION", True, data={"store": store})


def handle_send_image(
    params: Dict, user_id: int, db: DBService, currency: Optional[CurrencyConverter]
) -> ActionResult:
    product_id = params.get("product_id")
    file_id = params.get("file_id")
    if not product_id or not file_id:
        return ActionResult("SEND_IMAGE", False, error="product_id y file_id requeridos")

    try:
        product = db.get_product_by_id(int(product_id))
    except (TypeError, ValueError):
        return ActionResult("SEND_IMAGE", False, error="product_id inválido")
    if product is None:
        return ActionResult("SEND_IMAGE", False, error=f"Producto {product_id} no encontrado")

    return ActionResult("SEND_IMAGE", True, data={"product": product, "file_id": file_id})


def handle_end_conversation(
    params: Dict, user_id: int, db: DBService, currency: Optional[CurrencyConverter]
) -> ActionResult:
    reason = params.get("reason") or DEFAULT_END_REASON
    active = db.get_active_conversation(user_id)
    if active is None:
        return ActionResult(
            "END_CONVERSATION",
            True,
            data={"conversation_id": None, "conversation_ended": False, "reason": reason},
        )

    db.end_conversation(active["id"], reason=reason)
    logger.info(f"[{user_id}] Conversación {active['id']} finalizada: {reason}")
    return ActionResult(
        "END_CONVERSATION",
        True,
        data={"conversation_id": active["id"], "conversation_ended": True, "reason": reason},
    )


ActionHandler = Callable[
    [Dict, int, DBService, Optional[CurrencyConverter]], ActionResult
]

ACTION_HANDLERS: Dict[str, ActionHandler] = {
    "CONSULT_CATALOG": handle_consult_catalog,
    "CONSULT_GUARANTEES": handle_consult_guarantees,
    "REGISTER_GUARANTEE": handle_register_guarantee,
    "CONSULT_SCHEDULE": handle_consult_schedule,
    "SEND_GEOLOCATION": handle_send_geolocation,
    "SEND_IMAGE": handle_send_image,
    "END_CONVERSATION": handle_end_conversation,
}


#  FORMATTERS


def format_catalog_response(products: List[Dict]) -> str:
    """Formatea el catálogo para Telegram (Markdown)."""
    if not products:
        return "No encontré productos con esos criterios. ¿Quieres probar con otra búsqueda?"

    lines = ["🛍️ *Nuestros Productos Disponibles*\n"]
    for p in products:
        price = f"{_format_usd(p['price'])} USD"
        if p.get("price_bs"):
            price += f" / {_format_bs(p['price_bs'])}"
        stock = (
            f"✅ Disponible ({p['available_units']} unidades)"
            if p["available_units"] > 0
            else "❌ Sin stock"
        )
        lines.append(
            f"• *{p['name']}* ({p['brand']}) - Precio: {price}\n"
            f"  _{(p.get('description') or '')[:90]}_\n"
            f"  {stock}"
        )
    return "\n".join(lines)


def format_guarantees_response(guarantees: List[Dict]) -> str:
    if not guarantees:
        return "No tienes garantías registradas."

    lines = [f"Tienes {len(guarantees)} garantía(s) registrada(s):\n"]
    for g in guarantees:
        status = GUARANTEE_STATUS_LABELS.get(g["status"], g["status"])
        lines.append(
            f"🔧 *#{g['id']}* - Factura {g['invoice_number']}\n"
            f"   Estado: {status} | Registrada: {g['created_at'][:10]}"
        )
    return "\n".join(lines)


def format_schedule_response(schedules: List[Dict]) -> str:
    if not schedules:
        return "Aún no tenemos horarios de atención cargados."

    lines = ["🕒 *Horarios de atención*\n"]
    for s in schedules:
        day = DAY_NAMES.get(s["day_of_week"], str(s["day_of_week"]))
        hours = f"{s['open_time']} - {s['close_time']}" if s["is_active"] else "Cerrado"
        lines.append(f"• {day}: {hours}")
    return "\n".join(lines)


def format_location_response(store: Dict) -> str:
    lines = [f"📍 *{store['name']}*", store["address"]]
    if store.get("latitude") is not None and store.get("longitude") is not None:
        lines.append(
            f"https://maps.google.com/?q={store['latitude']},{store['longitude']}"
        )
    if store.get("phone"):
        lines.append(f"📞 {store['phone']}")
    return "\n".join(lines)


def format_contact_response(store: Dict) -> str:
    lines = ["📞 *Información de Contacto*", "", "Puedes contactarnos a través de:"]
    if store.get("phone"):
        lines.append(f"☎️ Teléfono: {store['phone']}")
    if store.get("email"):
        lines.append(f"📧 Email: {store['email']}")
    lines.append(f"📍 Dirección: {store['address']}")
    return "\n".join(lines)


def format_product_caption(product: Dict) -> str:
    return f"{product['name']} ({product['brand']}) - {_format_usd(product['price'])} USD"
