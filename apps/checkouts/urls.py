from django.urls import path

from . import views

app_name = 'checkouts'

urlpatterns = [
    path('email-capture', views.email_capture, name='email_capture'),
    path('recover/<str:checkout_id>', views.recover_checkout, name='recover'),
    path('process', views.process_abandoned, name='process'),
]
