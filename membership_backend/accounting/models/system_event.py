# accounting/models/system_event.py

from __future__ import annotations

import uuid

from django.db import models
from django.utils import timezone


class SystemEvent(models.Model):
    """
    One row per background run (Xero sync, accounts sync).
    The operator dashboard reads the latest rows and their summary.
    """

    EVENT_XERO_SYNC = "xero_sync"
    EVENT_XERO_ACCOUNTS_SYNC = "xero_accounts_sync"

    EVENT_CHOICES = [
        (EVENT_XERO_SYNC, "Xero Sync"),
        (EVENT_XERO_ACCOUNTS_SYNC, "Xero Accounts Sync"),
    ]

    STATUS_RUNNING = "running"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"

    STATUS_CHOICES = [
        (STATUS_RUNNING, "Running"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    event_type = models.CharField(max_length=40, choices=EVENT_CHOICES)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_RUNNING)
    summary = models.JSONField(default=dict, blank=True)
    triggered_by = models.CharField(max_length=100, blank=True, default="")

    started_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-started_at"]
        indexes = [models.Index(fields=["event_type", "started_at"], name="system_event_type_started_idx")]

    def finish(self, *, status: str, summary: dict) -> None:
        self.status = status
        self.summary = summary
        self.completed_at = timezone.now()
        self.save(update_fields=["status", "summary", "completed_at"])

    def __str__(self):
        return f"{self.event_type} {self.status} @ {self.started_at:%Y-%m-%d %H:%M}"
