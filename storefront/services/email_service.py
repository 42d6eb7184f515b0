"""
Email service for order confirmations and shop alerts.
Uses Flask-Mail for SMTP integration with UTF-8 support.

Every sender returns a bool and never raises: a mail failure must not undo a
paid order.
"""
import logging
from flask import current_app
from flask_mail import Mail, Message

from storefront.utils.money import format_price

logger = logging.getLogger(__name__)

mail = Mail()


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Prevents 500 errors in dev or misconfigured environments.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def _delivery_label(order) -> str:
    if order.delivery_method.value == 'pickup':
        return f"Retrait en boutique - {current_app.config.get('SHOP_ADDRESS', '')}"
    return f"Livraison à domicile - {order.shipping_address_line}"


def _render_confirmation_html(order) -> str:
    shop_name = current_app.config.get('SHOP_NAME', '')
    rows = "".join(
        f"""
        <tr>
            <td>{item.product_name}</td>
            <td align="center">{item.quantity}</td>
            <td align="right">{format_price(item.total_price)}</td>
        </tr>
        """
        for item in order.items
    )
    shipping = 'Offerte' if order.shipping_cost == 0 else format_price(order.shipping_cost)
    discount_row = (
        f"<p>Réduction : -{format_price(order.discount)}</p>" if order.discount > 0 else ""
    )

    return f"""
    <!DOCTYPE html>
    <html lang="fr">
    <head><meta charset="UTF-8"></head>
    <body style="font-family: Arial, sans-serif; background-color: #FDF6EC;">
        <div style="max-width: 600px; margin: auto; padding: 20px;">
            <h1>{shop_name}</h1>
            <p>Bonjour <strong>{order.customer_name}</strong>,</p>
            <p>Votre commande <strong>{order.order_number}</strong> a bien été enregistrée.</p>
            <table border="1" cellpadding="8" cellspacing="0" width="100%">
                <tr>
                    <th>Produit</th>
                    <th>Qté</th>
                    <th>Total</th>
                </tr>
                {rows}
            </table>
            <p>Sous-total : {format_price(order.subtotal)}</p>
            <p>Livraison : {shipping}</p>
            {discount_row}
            <p><strong>Total : {format_price(order.total)}</strong></p>
            <p><strong>Mode de livraison :</strong><br>{_delivery_label(order)}</p>
        </div>
    </body>
    </html>
    """


def send_order_confirmation(order) -> bool:
    """
    Send the order recap to the customer.

    Args:
        order: paid Order (items loaded)

    Returns:
        True if sent (or mail disabled), False on failure
    """
    try:
        if not _mail_enabled():
            logger.info(f"[MAIL DISABLED] Order confirmation skipped for {order.order_number}")
            return True

        shop_name = current_app.config.get('SHOP_NAME', '')
        text_body = (
            f"Bonjour {order.customer_name},\n\n"
            f"Votre commande {order.order_number} a bien été enregistrée.\n"
            f"Total : {format_price(order.total)}\n"
            f"{_delivery_label(order)}\n"
        )
        msg = Message(
            subject=f"Confirmation de commande {order.order_number} - {shop_name}",
            recipients=[order.customer_email],
            body=text_body,
            html=_render_confirmation_html(order),
        )
        mail.send(msg)
        logger.info(f"[EMAIL] Order confirmation sent to {order.customer_email}")
        return True

    except Exception as e:
        logger.exception(f"[EMAIL] Error sending order confirmation for {order.order_number}: {e}")
        return False


def send_admin_alert(order_number: str, total) -> bool:
    """Tell the shop a new order was paid."""
    try:
        if not _mail_enabled():
            logger.info(f"[MAIL DISABLED] Admin alert skipped for {order_number}")
            return True

        app_url = current_app.config.get('APP_URL', '')
        html_body = f"""
        <div style="font-family: Arial, sans-serif; padding: 20px;">
            <h2>Nouvelle commande reçue !</h2>
            <p><strong>Commande :</strong> {order_number}</p>
            <p><strong>Montant :</strong> {format_price(total)}</p>
            <p><a href="{app_url}/admin/orders">Voir dans le tableau de bord</a></p>
        </div>
        """
        msg = Message(
            subject=f"Nouvelle commande {order_number} - {format_price(total)}",
            recipients=[current_app.config.get('ADMIN_EMAIL')],
            html=html_body,
        )
        mail.send(msg)
        return True

    except Exception:
        logger.exception("Error sending admin alert")
        return False


def send_low_stock_alert(products: list) -> bool:
    """List products that dropped to their alert threshold after a sale."""
    try:
        if not products:
            return True
        if not _mail_enabled():
            logger.info("[MAIL DISABLED] Low stock alert skipped")
            return True

        rows = "".join(
            f"""
            <tr>
                <td>{p.name}</td>
                <td align="center">{p.stock}</td>
                <td align="center">{p.stock_alert_threshold}</td>
            </tr>
            """
            for p in products
        )
        html_body = f"""
        <h2>Alerte stock bas</h2>
        <table border="1" cellpadding="8" cellspacing="0" width="100%">
            <tr>
                <th>Produit</th>
                <th>Stock actuel</th>
                <th>Seuil</th>
            </tr>
            {rows}
        </table>
        """
        msg = Message(
            subject=f"Stock bas - {current_app.config.get('SHOP_NAME', '')}",
            recipients=[current_app.config.get('ADMIN_EMAIL')],
            html=html_body,
        )
        mail.send(msg)
        return True

    except Exception:
        logger.exception("Error sending low stock alert")
        return False
