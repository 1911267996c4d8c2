"""
Email Delivery for restock notices and order confirmations.

Both senders return True only when SendGrid accepted the message. They never
raise: a failed send is logged and reported as False so callers can leave the
subscription pending or carry on with the order.
"""

import asyncio
from html import escape

import sendgrid
import structlog
from sendgrid.helpers.mail import Mail

from core.config import get_settings

settings = get_settings()
logger = structlog.get_logger()

PRODUCT_TITLE = "Licuadora Portátil"
ACCEPTED_STATUS_CODES = (200, 201, 202)


def _deliver(to_email: str, subject: str, html_content: str) -> bool:
    client = sendgrid.SendGridAPIClient(api_key=settings.sendgrid_api_key)
    message = Mail(
        from_email=settings.notification_from_email,
        to_emails=to_email,
        subject=subject,
        html_content=html_content,
    )
    response = client.send(message)
    return response.status_code in ACCEPTED_STATUS_CODES


async def _send(to_email: str, subject: str, html_content: str, kind: str) -> bool:
    if not settings.sendgrid_api_key:
        logger.warning("email.not_configured", kind=kind)
        return False
    try:
        delivered = await asyncio.to_thread(_deliver, to_email, subject, html_content)
    except Exception as exc:  # noqa: BLE001
        logger.error("email.send_failed", kind=kind, error=str(exc))
        return False
    if not delivered:
        logger.warning("email.rejected", kind=kind)
    return delivered


def render_restock_notice(variant_label: str, quantity: int, shop_url: str) -> str:
    units = "unidad" if quantity == 1 else "unidades"
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; color: #333;">
      <div style="background: #48bb78; color: white; padding: 20px; border-radius: 8px 8px 0 0;">
        <h1 style="margin: 0; font-size: 20px;">¡Volvió el stock!</h1>
      </div>
      <div style="background: #f7fafc; padding: 20px; border-radius: 0 0 8px 8px;">
        <p>La variante que esperabas ya está disponible.</p>
        <div style="background: #e6fffa; border-left: 4px solid #48bb78; padding: 16px; border-radius: 4px;">
          <strong>Variante:</strong> {escape(variant_label)}<br>
          <strong>Cantidad solicitada:</strong> {quantity} {units}
        </div>
        <a href="{escape(shop_url)}"
           style="display: inline-block; background: #48bb78; color: white; padding: 12px 24px;
                  border-radius: 6px; text-decoration: none; font-weight: bold; margin-top: 20px;">
          Comprar ahora
        </a>
      </div>
    </div>
    """


async def send_restock_notice(email: str, variant_label: str, quantity: int) -> bool:
    """Tell a subscriber their variant is back in stock."""
    shop_url = f"{settings.frontend_url.rstrip('/')}/shop"
    subject = f"¡Stock Disponible - {PRODUCT_TITLE} {variant_label}"
    return await _send(email, subject, render_restock_notice(variant_label, quantity, shop_url), "restock")


def render_order_confirmation(order, items: list[dict], estimated_delivery_days: int | None = None) -> str:
    rows = "".join(
        f"<tr><td>{escape(item['label'])}</td><td>{item['quantity']}</td>"
        f"<td>${item['unit_price']:.2f}</td><td>${item['subtotal']:.2f}</td></tr>"
        for item in items
    )
    preorder_notice = ""
    if order.is_preorder:
        days = estimated_delivery_days or 10
        preorder_notice = (
            '<p style="background: #fffbeb; border-left: 4px solid #f59e0b; padding: 12px;">'
            f"Pedido diferido: el envío estimado es en {days} días.</p>"
        )
    return f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; color: #333;">
      <div style="background: #4a5568; color: white; padding: 20px; border-radius: 8px 8px 0 0;">
        <h1 style="margin: 0; font-size: 20px;">Gracias por tu compra, {escape(order.customer_name)}</h1>
      </div>
      <div style="background: #f7fafc; padding: 20px; border-radius: 0 0 8px 8px;">
        {preorder_notice}
        <table style="width: 100%; border-collapse: collapse;">
          <tr><th>Variante</th><th>Cantidad</th><th>Precio</th><th>Subtotal</th></tr>
          {rows}
        </table>
        <p style="font-size: 18px; font-weight: bold;">Total: ${order.total:.2f}</p>
        <p>Envío a: {escape(order.address)}, {escape(order.city)} ({escape(order.zip_code)})</p>
      </div>
    </div>
    """


async def send_order_confirmation(order, items: list[dict], estimated_delivery_days: int | None = None) -> bool:
    """Confirmation email after checkout. Failure never affects the order."""
    if order.is_preorder:
        subject = f"Pedido Diferido Confirmado - {order.order_id}"
    else:
        subject = f"Confirmación de Pedido - {order.order_id}"
    html_content = render_order_confirmation(order, items, estimated_delivery_days)
    return await _send(order.customer_email, subject, html_content, "order_confirmation")
