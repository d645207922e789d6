from django.urls import path

from . import views


urlpatterns = [
    path("subscribe", views.CallbackView.as_view(), name="pubsub-subscribe")
]
