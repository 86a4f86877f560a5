from __future__ import annotations

from django.db import models


class SyncBlob(models.Model):
    """One stored account document, addressed by its sync code.

    ``payload`` is the JSON-encoded document exactly as written by the sync
    service; the database never interprets it.
    """
    key = models.CharField(primary_key=True, max_length=64)
    payload = models.BinaryField()
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-updated_at']
        indexes = [
            models.Index(fields=['updated_at'], name='devicesync_blob_updated_idx'),
        ]

    def __str__(self):  # pragma: no cover - debug convenience
        return self.key
