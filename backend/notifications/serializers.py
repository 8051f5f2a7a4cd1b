from rest_framework import serializers

from .models import Notification


class NotificationSerializer(serializers.ModelSerializer):
    """Row of the `notifications` table"""
    user_id = serializers.IntegerField(read_only=True)

    class Meta:
        model = Notification
        fields = ['id', 'user_id', 'title', 'message', 'type', 'data', 'is_read', 'created_at']
        read_only_fields = ['id', 'user_id', 'title', 'message', 'type', 'data', 'created_at']
