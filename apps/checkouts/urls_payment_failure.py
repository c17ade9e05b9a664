from django.urls import path

from . import views

app_name = 'payment_failure'

urlpatterns = [
    path('recover/<str:retry_token>', views.recover_failed_checkout, name='recover'),
    path('process', views.process_failed, name='process'),
]
