from django.urls import path
from django.http import JsonResponse


def health_check(request):
    """Health check endpoint for load balancers and monitoring."""
    return JsonResponse({'status': 'healthy'})


urlpatterns = [
    path('health/', health_check, name='health_check'),
]
