from django.urls import path

from . import views

app_name = 'cart'

urlpatterns = [
    path('<str:user_id>', views.cart_detail, name='detail'),
    path('<str:user_id>/add', views.cart_add, name='add'),
    path('<str:user_id>/update', views.cart_update, name='update'),
    path('<str:user_id>/remove/<str:cart_item_id>', views.cart_remove, name='remove'),
    path('<str:user_id>/clear', views.cart_clear, name='clear'),
    path('<str:user_id>/save-email', views.cart_save_email, name='save_email'),
    path('<str:user_id>/apply-discount', views.cart_apply_discount, name='apply_discount'),
    path('<str:user_id>/remove-discount', views.cart_remove_discount, name='remove_discount'),
]
