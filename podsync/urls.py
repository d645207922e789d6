from django.urls import include, path
from django.contrib import admin


urlpatterns = [
    path("pubsub/", include("podsync.pubsub.urls")),
    path("admin/", admin.site.urls),
]
