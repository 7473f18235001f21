"""
Serializers for the events app.

``capacity`` is set when a session is created and fixed afterwards,
since the organizer's plan or credit was checked against it.
"""
from rest_framework import serializers

from .models import Event, EventRegistration


class EventSerializer(serializers.ModelSerializer):
    """Serializer for Event objects."""

    organizer_id = serializers.IntegerField(read_only=True)
    capacity = serializers.IntegerField(min_value=1)
    registration_count = serializers.SerializerMethodField()

    class Meta:
        model = Event
        fields = [
            "id",
            "organizer_id",
            "title",
            "capacity",
            "status",
            "credit_consumed",
            "registration_count",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "organizer_id", "credit_consumed", "created_at", "updated_at"]

    def get_registration_count(self, obj) -> int:
        return obj.registrations.count()

    def validate_capacity(self, value):
        if self.instance is not None and value != self.instance.capacity:
            raise serializers.ValidationError("Capacity cannot be changed after the session is created.")
        return value


class EventRegistrationSerializer(serializers.ModelSerializer):
    class Meta:
        model = EventRegistration
        fields = ["id", "name", "email", "registered_at"]
        read_only_fields = ["id", "registered_at"]
