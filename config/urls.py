from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/auth/', include('apps.accounts.urls')),
    path('api/payments/', include('apps.payments.urls')),
    path('api/webhooks/', include('apps.webhooks.urls')),
]
