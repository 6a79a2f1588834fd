"""
URL mappings for the placement API.

Trailing slashes are omitted; identifiers travel in the path.
"""
from django.urls import path, include

from .views import applications, evaluations, health, internships, notifications


urlpatterns = [
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Internships
    path('api/internships/create', internships.create_internship),
    path('api/internships/<int:pk>', internships.delete_internship),
    path('api/internships/<int:pk>/status', internships.internship_status),
    path('api/internships/<int:pk>/capacity', internships.internship_capacity),
    # Applications
    path('api/internships/<int:pk>/apply', applications.apply_to_internship),
    path('api/applications/<int:pk>/cancel', applications.cancel_application),
    path('api/applications/<int:pk>/decide', applications.decide_application),
    # Evaluations
    path('api/applications/<int:pk>/evaluation', evaluations.open_evaluation),
    path('api/evaluations/<int:pk>/draft', evaluations.save_draft),
    path('api/evaluations/<int:pk>/submit', evaluations.submit_evaluation),
    path('api/evaluations/<int:pk>/validate', evaluations.validate_evaluation),
    # Notifications
    path('api/notifications', notifications.list_notifications),
    path('api/notifications/unread-count', notifications.unread_count),
    path('api/notifications/read-all', notifications.mark_all_read),
    path('api/notifications/<int:pk>', notifications.delete_notification),
    path('api/notifications/<int:pk>/read', notifications.mark_read),
]
