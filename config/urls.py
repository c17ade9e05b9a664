from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/cart/', include('apps.cart.urls')),
    path('api/discounts/', include('apps.discounts.urls')),
    path('api/orders/', include('apps.orders.urls')),
    path('api/payments/', include('apps.payments.urls')),
    path('api/checkout/', include('apps.checkouts.urls')),
    path('api/payment-failure/', include('apps.checkouts.urls_payment_failure')),
    path('api/reviews/', include('apps.reviews.urls')),
]
