from django.urls import path

from . import views

app_name = 'payments'

urlpatterns = [
    path('config', views.payment_config, name='config'),
    path('create-intent', views.create_intent, name='create_intent'),
    path('update-intent', views.update_intent, name='update_intent'),
    path('confirm', views.confirm_payment, name='confirm'),
    path('payment-failed', views.payment_failed, name='payment_failed'),
    path('status/<str:payment_intent_id>', views.payment_status, name='status'),
    path('check-before-confirm/<str:payment_intent_id>', views.payment_status, name='check_before_confirm'),
    path('refund', views.refund_payment, name='refund'),
    path('webhook', views.stripe_webhook, name='webhook'),
]
