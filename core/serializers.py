from rest_framework import serializers
from rest_framework_simplejwt.serializers import TokenObtainPairSerializer

from common.permissions import capabilities_for, get_user_role
from core.models import AuditLog, User


class RoleTokenObtainPairSerializer(TokenObtainPairSerializer):
    """Adds the role to the token so the apps can hide admin-only screens."""

    @classmethod
    def get_token(cls, user):
        token = super().get_token(user)
        token["username"] = user.username
        token["role"] = get_user_role(user)
        return token


class CurrentUserSerializer(serializers.ModelSerializer):
    role = serializers.SerializerMethodField()
    capabilities = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ["id", "username", "first_name", "last_name", "role", "capabilities"]
        read_only_fields = ["id", "username", "first_name", "last_name"]

    def get_role(self, obj):
        return get_user_role(obj)

    def get_capabilities(self, obj):
        return sorted(capabilities_for(obj))


class AuditLogSerializer(serializers.ModelSerializer):
    actor_username = serializers.CharField(source="actor.username", read_only=True, default=None)

    class Meta:
        model = AuditLog
        fields = [
            "id",
            "actor",
            "actor_username",
            "action",
            "entity",
            "entity_id",
            "client_id",
            "before_snapshot",
            "after_snapshot",
            "request_id",
            "created_at",
        ]
        read_only_fields = fields
