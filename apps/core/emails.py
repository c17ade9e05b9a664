"""
Emails transaccionales.

Cada envío renderiza `emails/<clave>.txt` y `emails/<clave>.html` y devuelve
un `EmailResult`; nunca lanza: los fallos quedan en el log y el llamador
decide si revierte su marca de envío.
"""
import logging
from dataclasses import dataclass
from email.utils import make_msgid

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.utils import translation

logger = logging.getLogger(__name__)

SUBJECTS = {
    'order_confirmation': {
        'sv': 'Orderbekräftelse {order_id}',
        'en': 'Order confirmation {order_id}',
    },
    'order_status_updated': {
        'sv': 'Din order {order_id} har uppdaterats',
        'en': 'Your order {order_id} has been updated',
    },
    'abandoned_checkout_first': {
        'sv': 'Du glömde något i varukorgen',
        'en': 'You left something in your cart',
    },
    'abandoned_checkout_second': {
        'sv': 'Dina varor väntar fortfarande på dig',
        'en': 'Your items are still waiting for you',
    },
    'payment_failed': {
        'sv': 'Betalningen kunde inte genomföras',
        'en': 'Your payment could not be completed',
    },
}


@dataclass
class EmailResult:
    success: bool
    message_id: str = ''
    error: str = ''


def _default_from_email():
    configured = getattr(settings, 'DEFAULT_FROM_EMAIL', '').strip()
    return configured or 'no-reply@localhost'


def _site_context():
    return {
        'site_name': getattr(settings, 'SITE_NAME', 'Storefront'),
        'frontend_url': getattr(settings, 'FRONTEND_URL', ''),
        'currency': getattr(settings, 'DEFAULT_CURRENCY', 'SEK'),
    }


def _language(language):
    supported = dict(getattr(settings, 'LANGUAGES', [])) or {'sv': 'Svenska'}
    code = (language or settings.LANGUAGE_CODE or 'sv').split('-')[0].lower()
    return code if code in supported else settings.LANGUAGE_CODE


def _subject(key, language, **params):
    options = SUBJECTS[key]
    template = options.get(language) or options['sv']
    return template.format(**params)


def send_templated_email(
    subject,
    to_emails,
    template_key,
    context=None,
    reply_to=None,
    language=None,
) -> EmailResult:
    recipients = [e for e in (to_emails or []) if e]
    if not recipients:
        return EmailResult(success=False, error='No recipients')

    payload = _site_context()
    if context:
        payload.update(context)

    try:
        with translation.override(language):
            text_body = render_to_string(f"emails/{template_key}.txt", payload)
            html_body = render_to_string(f"emails/{template_key}.html", payload)
    except Exception as exc:
        logger.exception(
            "Error renderizando template de email '%s'",
            template_key,
        )
        return EmailResult(success=False, error=str(exc))

    from_email = _default_from_email()
    message_id = make_msgid(domain=from_email.rsplit('@', 1)[-1] or 'localhost')
    headers = {
        'Message-ID': message_id,
        'X-Auto-Response-Suppress': 'All',
        'Auto-Submitted': 'auto-generated',
    }

    message = EmailMultiAlternatives(
        subject=subject.strip().replace("\n", " "),
        body=text_body,
        from_email=from_email,
        to=recipients,
        reply_to=reply_to,
        headers=headers,
    )
    message.attach_alternative(html_body, "text/html")
    try:
        sent = message.send(fail_silently=False)
    except Exception as exc:
        logger.exception(
            "Error enviando email '%s' a %s",
            template_key,
            recipients,
        )
        return EmailResult(success=False, error=str(exc))
    if not sent:
        return EmailResult(success=False, error='Email backend did not send the message')
    logger.info("Email '%s' enviado a %s (%s)", template_key, recipients, message_id)
    return EmailResult(success=True, message_id=message_id)


class Mailer:
    """Fachada de envíos usada por los servicios (inyectable en tests)."""

    def send_order_confirmation(self, to, name, order, language=None) -> EmailResult:
        language = _language(language)
        return send_templated_email(
            subject=_subject('order_confirmation', language, order_id=order.get('orderId', '')),
            to_emails=[to],
            template_key='order_confirmation',
            context={'name': name, 'order': order, 'totals': order.get('totals') or {}},
            language=language,
        )

    def send_order_status_updated(self, to, name, order, language=None) -> EmailResult:
        language = _language(language)
        return send_templated_email(
            subject=_subject('order_status_updated', language, order_id=order.get('orderId', '')),
            to_emails=[to],
            template_key='order_status_updated',
            context={'name': name, 'order': order},
            language=language,
        )

    def send_abandoned_checkout(self, to, checkout, stage=1, language=None) -> EmailResult:
        language = _language(language)
        key = 'abandoned_checkout_first' if stage == 1 else 'abandoned_checkout_second'
        recover_url = f"{settings.FRONTEND_URL}/checkout?recover={checkout.get('id', '')}"
        return send_templated_email(
            subject=_subject(key, language),
            to_emails=[to],
            template_key='abandoned_checkout',
            context={
                'checkout': checkout,
                'items': (checkout.get('cart') or {}).get('items') or [],
                'stage': stage,
                'recover_url': recover_url,
            },
            language=language,
        )

    def send_payment_failed(self, to, name, failed_checkout, language=None) -> EmailResult:
        language = _language(language)
        retry_url = f"{settings.FRONTEND_URL}/checkout?retry={failed_checkout.get('retryToken', '')}"
        return send_templated_email(
            subject=_subject('payment_failed', language),
            to_emails=[to],
            template_key='payment_failed',
            context={
                'name': name,
                'checkout': failed_checkout,
                'items': (failed_checkout.get('cart') or {}).get('items') or [],
                'retry_url': retry_url,
            },
            language=language,
        )
