"""
ViewSets for the events app.

Organizers manage their own networking sessions; registration for a
published session is open to anyone.  Billing rules live in
``events.services``: this module only wires them to HTTP.
"""
import logging

from django.shortcuts import get_object_or_404
from rest_framework import permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from billing.exceptions import InsufficientBalance

from . import services
from .models import Event
from .serializers import EventRegistrationSerializer, EventSerializer

logger = logging.getLogger(__name__)


class EventViewSet(viewsets.ModelViewSet):
    """
    CRUD over the caller's networking sessions with:
    - capacity authorization on create
    - public participant registration (/register)
    - organizer-only registration list and removal (/registrations)
    """
    serializer_class = EventSerializer
    permission_classes = [permissions.IsAuthenticated]
    http_method_names = ["get", "post", "patch", "delete", "head", "options"]
    lookup_value_regex = r"\d+"

    def get_queryset(self):
        return Event.objects.filter(organizer=self.request.user).order_by("-created_at")

    def perform_create(self, serializer):
        data = serializer.validated_data
        serializer.instance = services.create_event(self.request.user, **data)

    def perform_update(self, serializer):
        instance = serializer.instance
        becoming_draft = (
            serializer.validated_data.get("status") == Event.STATUS_DRAFT
            and instance.status == Event.STATUS_PUBLISHED
        )
        serializer.save()
        if becoming_draft:
            services.release_credit(serializer.instance)

    def perform_destroy(self, instance):
        if services.delete_event(instance):
            logger.info("Refunded credit for deleted session %s", instance.pk)

    # POST /api/events/{id}/register/
    @action(detail=True, methods=["post"], permission_classes=[permissions.AllowAny], url_path="register")
    def register(self, request, pk=None):
        """
        Register a participant for a published session.
        """
        serializer = EventRegistrationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            registration = services.register_participant(pk, **serializer.validated_data)
        except InsufficientBalance as exc:
            return Response(
                {"error": "insufficient_credits", "message": str(exc), "balance": exc.balance},
                status=status.HTTP_402_PAYMENT_REQUIRED,
            )
        return Response(EventRegistrationSerializer(registration).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=["get"], url_path="registrations")
    def registrations(self, request, pk=None):
        """
        Owner-only view: list everyone registered for this session.
        """
        event = self.get_object()
        serializer = EventRegistrationSerializer(event.registrations.all(), many=True)
        return Response(serializer.data)

    @action(detail=True, methods=["delete"], url_path=r"registrations/(?P<registration_id>\d+)")
    def remove_registration(self, request, pk=None, registration_id=None):
        event = self.get_object()
        registration = get_object_or_404(event.registrations, pk=registration_id)
        registration.delete()
        return Response(status=status.HTTP_204_NO_CONTENT)
