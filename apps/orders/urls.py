from django.urls import path

from . import views

app_name = 'orders'

urlpatterns = [
    path('create', views.order_create, name='create'),
    path('<str:order_id>', views.order_detail, name='detail'),
    path('<str:order_id>/status', views.order_update_status, name='update_status'),
]
