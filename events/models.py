"""
Models for the events app.

An ``Event`` is a networking session run by one organizer for up to
``capacity`` participants.  ``credit_consumed`` records that the
session's first registration used one of the organizer's event
credits, so deleting an empty session can give it back.
"""
from django.conf import settings
from django.db import models


class Event(models.Model):
    """A networking session."""

    STATUS_DRAFT = "draft"
    STATUS_PUBLISHED = "published"
    STATUS_CHOICES = [
        (STATUS_DRAFT, "Draft"),
        (STATUS_PUBLISHED, "Published"),
    ]

    organizer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="events",
    )
    title = models.CharField(max_length=255)
    capacity = models.PositiveIntegerField(default=10)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PUBLISHED)
    credit_consumed = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{self.title} ({self.capacity})"


class EventRegistration(models.Model):
    event = models.ForeignKey(Event, on_delete=models.CASCADE, related_name="registrations")
    name = models.CharField(max_length=255)
    email = models.EmailField()
    registered_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ("event", "email")
        ordering = ["registered_at"]

    def __str__(self):
        return f"{self.email} -> {self.event_id}"
