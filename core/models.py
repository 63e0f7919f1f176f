import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q
from django.db.models.functions import Lower

from core.aggregate import DEFAULT_INACTIVITY_TIMEOUT, ShopProfile


class Shop(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=255)
    address = models.CharField(max_length=500, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    email = models.EmailField(blank=True)
    logo_url = models.TextField(blank=True)
    is_registered = models.BooleanField(default=True)
    prepared_by = models.CharField(max_length=255, blank=True)
    owner_username = models.CharField(max_length=150, blank=True)
    inactivity_timeout = models.PositiveIntegerField(default=DEFAULT_INACTIVITY_TIMEOUT)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    PROFILE_FIELDS = (
        "name",
        "address",
        "phone",
        "email",
        "logo_url",
        "is_registered",
        "prepared_by",
        "owner_username",
        "inactivity_timeout",
    )

    def __str__(self):
        return self.name

    def to_profile(self):
        return ShopProfile(
            name=self.name,
            address=self.address,
            phone=self.phone,
            email=self.email or None,
            logo_url=self.logo_url or None,
            is_registered=self.is_registered,
            prepared_by=self.prepared_by or None,
            owner_username=self.owner_username or None,
            inactivity_timeout=self.inactivity_timeout,
        )

    def apply_profile(self, profile):
        for field_name in self.PROFILE_FIELDS:
            value = getattr(profile, field_name)
            setattr(self, field_name, "" if value is None else value)


class User(AbstractUser):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    email = models.EmailField(blank=True)
    shop = models.ForeignKey(Shop, on_delete=models.PROTECT, null=True, blank=True, related_name="users")
    last_activity_at = models.DateTimeField(null=True, blank=True)

    class Meta(AbstractUser.Meta):
        constraints = [
            models.UniqueConstraint(
                Lower("email"),
                condition=~Q(email=""),
                name="core_user_email_ci_unique",
            )
        ]

    def save(self, *args, **kwargs):
        if self.email:
            self.email = self.email.strip().lower()
        super().save(*args, **kwargs)


class ShopDocument(models.Model):
    """The persisted ledger document of one shop; replaced whole on every command."""

    shop = models.OneToOneField(Shop, on_delete=models.CASCADE, primary_key=True, related_name="document")
    data = models.JSONField(default=dict)
    revision = models.PositiveBigIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)


class AuditLog(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    shop = models.ForeignKey(Shop, on_delete=models.CASCADE, null=True, blank=True)
    actor = models.ForeignKey(User, on_delete=models.SET_NULL, null=True, blank=True)
    action = models.CharField(max_length=64)
    entity = models.CharField(max_length=64)
    entity_ref = models.CharField(max_length=128, blank=True)
    before_snapshot = models.JSONField(null=True, blank=True)
    after_snapshot = models.JSONField(null=True, blank=True)
    request_id = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=["shop", "created_at"], name="core_auditl_shop_id_4c1f0e_idx"),
            models.Index(fields=["action", "created_at"], name="core_auditl_action_7a9b2d_idx"),
            models.Index(fields=["entity", "created_at"], name="core_auditl_entity_e3d5a1_idx"),
        ]
