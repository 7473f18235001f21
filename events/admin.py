"""
Admin configuration for the events app.

Defines the list display and search fields for networking sessions and
their registrations in the Django admin site.
"""
from django.contrib import admin

from .models import Event, EventRegistration


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ("title", "organizer", "capacity", "status", "credit_consumed", "created_at")
    list_filter = ("status", "credit_consumed")
    search_fields = ("title", "organizer__username", "organizer__email")


@admin.register(EventRegistration)
class EventRegistrationAdmin(admin.ModelAdmin):
    list_display = ("email", "name", "event", "registered_at")
    search_fields = ("email", "name", "event__title")
