"""
Django admin registrations for the placement models.

Place counters and statuses are shown read-only: they move through the
lifecycle engine (or its capacity correction), never by hand.
"""

from django.contrib import admin

from .models import (
    Application,
    AuditEvent,
    Department,
    Establishment,
    Evaluation,
    Internship,
    Notification,
    User,
)


@admin.register(Establishment)
class EstablishmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'city', 'kind', 'is_active')
    list_filter = ('kind', 'is_active')
    search_fields = ('name', 'city')


@admin.register(Department)
class DepartmentAdmin(admin.ModelAdmin):
    list_display = ('id', 'name', 'establishment', 'chief')
    list_filter = ('establishment',)
    search_fields = ('name',)


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'department', 'is_active', 'is_superuser')
    list_filter = ('role', 'department')
    search_fields = ('username', 'first_name', 'last_name', 'email')


@admin.register(Internship)
class InternshipAdmin(admin.ModelAdmin):
    list_display = ('id', 'title', 'department', 'status', 'filled_places', 'total_places', 'start_date')
    list_filter = ('status', 'establishment')
    search_fields = ('title',)
    readonly_fields = ('filled_places', 'status')


@admin.register(Application)
class ApplicationAdmin(admin.ModelAdmin):
    list_display = ('id', 'student', 'internship', 'status', 'applied_date', 'response_date')
    list_filter = ('status',)
    search_fields = ('student__username', 'internship__title')
    readonly_fields = ('status', 'response_date', 'reviewed_by')


@admin.register(Evaluation)
class EvaluationAdmin(admin.ModelAdmin):
    list_display = ('id', 'student', 'internship', 'doctor', 'status', 'score', 'validated_at')
    list_filter = ('status',)
    search_fields = ('student__username', 'doctor__username', 'internship__title')


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('id', 'user', 'type', 'title', 'is_read', 'created_at')
    list_filter = ('type', 'is_read')
    search_fields = ('user__username', 'title')


@admin.register(AuditEvent)
class AuditEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'action', 'object_type', 'object_id', 'user', 'created_at')
    list_filter = ('action', 'object_type')
    readonly_fields = ('user', 'action', 'object_type', 'object_id', 'detail', 'created_at')
