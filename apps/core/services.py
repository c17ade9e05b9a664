"""
Contenedor de servicios.

Se construye una vez en `CoreConfig.ready()`; las vistas y los comandos lo
obtienen con `get_services()`. Los tests sustituyen store, pasarela o mailer
pasándolos a `build_services`.
"""
from dataclasses import dataclass

from django.conf import settings

from apps.cart.services import CartService
from apps.checkouts.services import CheckoutService
from apps.discounts.services import DiscountService
from apps.orders.services import OrderService
from apps.payments.gateway import StripeGateway
from apps.payments.services import PaymentService
from apps.reviews.services import ReviewService

from .emails import Mailer
from .store import build_store


@dataclass
class Services:
    store: object
    gateway: object
    mailer: object
    discounts: DiscountService
    carts: CartService
    orders: OrderService
    payments: PaymentService
    checkouts: CheckoutService
    reviews: ReviewService


def build_services(store=None, gateway=None, mailer=None) -> Services:
    if store is None:
        store = build_store(settings.DOCUMENT_STORE_BACKEND, settings.DOCUMENT_STORE_DATABASE)
    if gateway is None:
        gateway = StripeGateway.from_settings()
    if mailer is None:
        mailer = Mailer()

    discounts = DiscountService(store)
    checkouts = CheckoutService(store, mailer)
    return Services(
        store=store,
        gateway=gateway,
        mailer=mailer,
        discounts=discounts,
        carts=CartService(store, discounts),
        orders=OrderService(store, discounts, mailer),
        payments=PaymentService(store, gateway, discounts, checkouts, mailer),
        checkouts=checkouts,
        reviews=ReviewService(store),
    )
