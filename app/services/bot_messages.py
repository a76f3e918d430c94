"""Texts sent by the WhatsApp bot and the helpers that format them."""

import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Sequence

from app.services.matchers import STYLE_LABELS

INACTIVITY_LOG_ENTRY = "Mensaje de seguimiento por inactividad"

MSG_ASK_NAME_AGAIN = "No alcancé a leer tu nombre 🙈 *¿Cómo te llamas?*"
MSG_STYLE_RETRY = "Por favor selecciona una opción:\n1. Urbano\n2. Clásico"
MSG_ADD_MORE = (
    "Perfecto, ¿qué más te interesa?\n\n"
    "Puedes:\n"
    "• Escribir el nombre de un producto\n"
    '• Decir "ver catálogo" para ver más opciones'
)
MSG_NO_PRODUCTS = "😕 En este momento no tenemos productos disponibles en el catálogo.\n\nEscríbenos qué buscas y te ayudamos."

STYLE_BUTTONS = (("style_urbano", "🏙️ Urbano"), ("style_clasico", "👔 Clásico"))
CATALOG_BUTTONS = (("catalog_online", "🔗 Ver catálogo online"), ("catalog_here", "🛒 Ver aquí mismo"))
CART_BUTTONS = (("cart_add_more", "✅ Sí, agregar más"), ("cart_confirm", "📋 No, ver resumen"))
ORDER_BUTTONS = (("order_confirm", "✅ Sí, confirmar"), ("order_edit", "✏️ Editar pedido"))

LIST_BUTTON_LABEL = "Ver productos"
LIST_SECTION_TITLE = "🏆 Productos destacados"
PRODUCT_SELECTION_PREFIX = "product_"


def format_price(amount) -> str:
    """Colombian peso formatting: dot for thousands, comma for decimals."""
    value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    integer_part = int(value)
    cents = abs(value - integer_part)
    formatted = f"{abs(integer_part):,}".replace(",", ".")
    if value < 0:
        formatted = f"-{formatted}"
    if cents:
        formatted += "," + f"{cents:.2f}"[2:].rstrip("0")
    return formatted


def format_percentage(value) -> str:
    normalized = Decimal(str(value)).normalize()
    return f"{normalized:f}"


def format_phone_number(phone: str) -> str:
    cleaned = re.sub(r"\D", "", phone or "")
    if cleaned.startswith("57") and len(cleaned) == 12:
        return f"+{cleaned[:2]} ({cleaned[2:5]}) {cleaned[5:8]}-{cleaned[8:]}"
    if len(cleaned) == 10:
        return f"+57 ({cleaned[:3]}) {cleaned[3:6]}-{cleaned[6:]}"
    return phone


def style_label(style: Optional[str]) -> str:
    return STYLE_LABELS.get(style, "No especificado") if style else "No especificado"


def format_cart(cart: Sequence) -> str:
    return "\n".join(f"{line.quantity}x {line.name} - ${format_price(line.line_total)}" for line in cart)


def format_product_lines(items: Iterable, *, bold: bool = False, with_price: bool = True) -> str:
    lines = []
    for index, item in enumerate(items, start=1):
        name = f"*{item.name}*" if bold else item.name
        lines.append(f"{index}. {name} - ${format_price(item.price)}" if with_price else f"{index}. {name}")
    return "\n".join(lines)


# --- conversation flow ---


def greeting(store_name: str) -> str:
    return f"""🏃‍♂️💨 *¡Hola! Bienvenido a {store_name}* 🏃‍♂️

Somos tu tienda de ropa urbana y clásica de la mejor calidad en Cartagena.

🤖 *Soy tu asistente virtual* y te voy a ayudar a encontrar exactamente lo que buscas.

*¿Cómo te llamas?* 😊"""


def ask_style(name: str) -> str:
    return f"""¡Mucho gusto, *{name}*! 👋

Ahora, cuéntanos, ¿qué tipo de estilo buscas?

🏙️ *Urbano* - Para un look moderno y fresco
👔 *Clásico* - Elegancia atemporal"""


def ask_catalog(style: Optional[str]) -> str:
    return f"""¡Excelente! 🎯 Estilo *{style_label(style)}* seleccionado.

📱 *¿Cómo quieres ver nuestros productos?*

🔗 *Ver catálogo completo online* - Navega en nuestra página web
🛒 *Ver aquí mismo* - Te muestro algunos productos destacados"""


def online_catalog(catalog_url: str) -> str:
    return (
        f"📱 *Aquí está nuestro catálogo online:*\n\n🔗 {catalog_url}\n\n"
        "Puedes filtrar por:\n"
        "• Estilo: Urbano 🏙️ / Clásico 👔\n"
        "• Tipo: Camisetas, Buzos, Pantalonetas...\n"
        "• Género: Hombre / Mujer\n\n"
        "Cuando encuentres algo que te guste, vuelve aquí y me dices qué quieres comprar. 💪"
    )


def plain_catalog(items: Sequence) -> str:
    if not items:
        return MSG_NO_PRODUCTS
    return (
        f"📦 *Nuestros productos disponibles:*\n\n{format_product_lines(items)}\n\n"
        "*¿Cuál te interesa?* Escribe el número o el nombre."
    )


def featured_list_body(count: int) -> str:
    return f"📦 *Nuestros productos ({count}):*\n\nSelecciona uno para ver detalles o escribe lo que buscas."


def product_detail(item) -> str:
    size_info = f"\n📏 Tallas: {', '.join(item.sizes)}" if item.sizes else ""
    color_info = f"\n🎨 Colores: {', '.join(item.colors)}" if item.colors else ""
    description = item.description or "Producto de alta calidad."
    return (
        f"🛍️ *{item.name}*\n\n💰 *Precio:* ${format_price(item.price)}{size_info}{color_info}\n\n"
        f"{description}\n\n*¿Cuántas unidades quieres?* (escribe un número)"
    )


def browse_results(query: str, items: Sequence) -> str:
    return (
        f'🔍 *Resultados para "{query}":*\n\n{format_product_lines(items, bold=True)}\n\n'
        "*¿Cuál te interesa?* Escribe el número o nombre."
    )


def browse_not_found(query: str, fallback: Sequence) -> str:
    return f'No encontré "{query}". 🤔\n\n📦 *Nuestro catálogo:*\n{format_product_lines(fallback)}\n\n*¿Cuál te interesa?*'


def product_results(query: str, items: Sequence) -> str:
    return (
        f'🔍 *Encontré esto para "{query}":*\n\n{format_product_lines(items, bold=True)}\n\n'
        "*¿Cuál te interesa y cuántas unidades?*\n"
        'Ejemplo: "Quiero la camiseta negra, 2 unidades"'
    )


def products_not_found(query: str, popular: Sequence) -> str:
    return (
        f'🤔 No encontré "{query}".\n\n💡 *Nuestros productos más populares:*\n'
        f"{format_product_lines(popular)}\n\n*¿Cuál te interesa?*"
    )


def quantity_not_understood(sample: Sequence) -> str:
    return (
        "🤔 No entendí qué producto quieres.\n\n💡 *Nuestros productos:*\n"
        f"{format_product_lines(sample, with_price=False)}\n\n*¿Cuál quieres?*"
    )


def added_to_cart(product_name: str, quantity: int, cart: Sequence, totals) -> str:
    return (
        f"✅ *¡Agregado al carrito!*\n\n🛒 *{quantity}x {product_name}*\n\n"
        f"📦 *Tu carrito actual:*\n{format_cart(cart)}\n\n"
        f"💵 *Subtotal:* ${format_price(totals.subtotal)}\n"
        f"🤝 Comisión ({format_percentage(totals.percentage)}%): ${format_price(totals.commission)}\n\n"
        "*¿Algo más?* Responde:\n"
        '• "Sí" o "agregar más" - para seguir comprando\n'
        '• "No" o "continuar" - para ver el resumen'
    )


def order_summary(conversation, totals) -> str:
    return f"""📋 *RESUMEN DE TU PEDIDO*

*Cliente:* {conversation.customer_name}
*Estilo:* {style_label(conversation.style)}
*Presupuesto:* {conversation.budget or 'A confirmar'}

🛒 *Productos:*
{format_cart(conversation.cart)}

💰 *RESUMEN FINANCIERO:*
─────────────────
Subtotal: ${format_price(totals.subtotal)}
Comisión ({format_percentage(totals.percentage)}%): -${format_price(totals.commission)}
─────────────────
💵 *Para la tienda:* ${format_price(totals.net)}

*¿Confirmas este pedido?* ✅"""


def inactivity_nudge(customer_name: str) -> str:
    greeting_name = f" {customer_name}" if customer_name else ""
    return f"""⏰ *Hola{greeting_name},*

Hemos notado que has estado inactivo. ¿Sigues interesado en nuestros productos?

Responde "sí" para continuar o "no" para que te contactemos después."""


# --- order notifications ---


def intermediary_summary(conversation, order_number: str, totals) -> str:
    products = "\n".join(
        f"• {line.quantity}x {line.name} - ${format_price(line.line_total)}" for line in conversation.cart
    )
    return f"""🛒 *NUEVO PEDIDO #{order_number}*

━━━━━━━━━━━━━━━━━━━━
👤 *CLIENTE:*
• Nombre: {conversation.customer_name}
• Teléfono: {format_phone_number(conversation.phone)}
• Estilo: {style_label(conversation.style)}
• Presupuesto: {conversation.budget or 'A confirmar'}
━━━━━━━━━━━━━━━━━━━━

📦 *PRODUCTOS:*
{products}

━━━━━━━━━━━━━━━━━━━━
💰 *RESUMEN FINANCIERO:*
• Subtotal: ${format_price(totals.subtotal)}
• Comisión ({format_percentage(totals.percentage)}%): ${format_price(totals.commission)}
━━━━━━━━━━━━━━━━━━━━
💵 *TU GANANCIA:* ${format_price(totals.commission)}
🏪 *PARA LA TIENDA:* ${format_price(totals.net)}
━━━━━━━━━━━━━━━━━━━━

📞 *Acción:* Contactar al cliente para confirmar detalles de entrega y pago."""


def owner_notification(conversation, order_number: str, totals) -> str:
    products = "\n".join(f"• {line.quantity}x {line.name}" for line in conversation.cart)
    phone = format_phone_number(conversation.phone)
    return f"""🏪 *NUEVO PEDIDO #{order_number}*

👤 Cliente: {conversation.customer_name}
📱 Teléfono: {phone}

📦 *Productos:*
{products}

💰 *Monto total:* ${format_price(totals.subtotal)}
📝 Pedido confirmado por intermediario

💡 El cliente está esperando tu contacto para finalizar la venta.

📞 Contactar: {phone}"""


def customer_confirmation(conversation, order_number: str, totals, store_name: str) -> str:
    return f"""✅ *¡Pedido confirmado, {conversation.customer_name}!* 🎉

📋 *Número de pedido:* #{order_number}

🛒 *Resumen:*
{format_cart(conversation.cart)}

💰 *Total:* ${format_price(totals.subtotal)}

📞 *Próximos pasos:*
Nuestro equipo te contactará al {format_phone_number(conversation.phone)} para confirmar:

• Método de pago
• Dirección de entrega
• Disponibilidad de productos

🏃‍♂️💨 ¡Gracias por elegir {store_name}!"""
