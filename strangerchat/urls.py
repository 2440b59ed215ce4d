from django.urls import include, path

urlpatterns = [
    path("api/", include("strangerchat.apps.chat_app.urls")),
]
