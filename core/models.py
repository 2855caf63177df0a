from django.contrib.auth.models import AbstractUser
from django.db import models


class User(AbstractUser):
    class Role(models.TextChoices):
        OPERATOR = "operator", "Operator"
        ADMIN = "admin", "Admin"

    role = models.CharField(max_length=32, choices=Role.choices, default=Role.OPERATOR)


class AuditLog(models.Model):
    """Who changed which bookkeeping record, with snapshots before and after."""

    class Entity(models.TextChoices):
        CLIENT = "client", "Client"
        CHALLAN = "challan", "Issue challan"
        RETURN = "return", "Return challan"
        STOCK = "stock", "Stock"
        BILL = "bill", "Bill"

    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True, related_name="audit_entries")
    action = models.CharField(max_length=64)
    entity = models.CharField(max_length=32, choices=Entity.choices)
    entity_id = models.CharField(max_length=64, null=True, blank=True)
    # Client whose ledger the change affects, so a client's history can be pulled in one query.
    client_id = models.CharField(max_length=64, null=True, blank=True)
    before_snapshot = models.JSONField(null=True, blank=True)
    after_snapshot = models.JSONField(null=True, blank=True)
    request_id = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["created_at"], name="auditlog_created_idx"),
            models.Index(fields=["entity", "entity_id"], name="auditlog_entity_idx"),
            models.Index(fields=["client_id", "created_at"], name="auditlog_client_idx"),
        ]

    def __str__(self):
        return f"{self.action} {self.entity_id or ''}".strip()
