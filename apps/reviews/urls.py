from django.urls import path

from . import views

app_name = 'reviews'

urlpatterns = [
    path('', views.review_list, name='list'),
    path('<str:review_id>', views.review_detail, name='detail'),
    path('<str:review_id>/approve', views.review_approve, name='approve'),
    path('<str:review_id>/reject', views.review_reject, name='reject'),
]
