from django.urls import path

from . import views

app_name = 'discounts'

urlpatterns = [
    path('validate', views.validate_code, name='validate'),
    path('subscribe', views.subscribe, name='subscribe'),
]
