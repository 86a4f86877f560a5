from django.urls import path

from .views import LoginView, SetupView, SyncView

urlpatterns = [
    path('api/sync', SyncView.as_view(), name='sync'),
    path('api/sync/setup', SetupView.as_view(), name='sync_setup'),
    path('api/sync/login', LoginView.as_view(), name='sync_login'),
]
