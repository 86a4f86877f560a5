from django.contrib import admin

from .models import SyncBlob


@admin.register(SyncBlob)
class SyncBlobAdmin(admin.ModelAdmin):
    """Read-only listing; payloads carry PIN hashes and salts, so they are never shown."""
    list_display = ('key', 'created_at', 'updated_at')
    search_fields = ('key',)
    ordering = ('-updated_at',)
    fields = ('key', 'created_at', 'updated_at')
    readonly_fields = ('key', 'created_at', 'updated_at')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
