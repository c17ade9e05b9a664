from django.contrib import admin

from .models import Document, SecurityEvent


@admin.register(Document)
class DocumentAdmin(admin.ModelAdmin):
    list_display = ('id', 'database', 'collection', 'document_key', 'updated_at')
    list_filter = ('database', 'collection')
    search_fields = ('collection',)
    readonly_fields = ('created_at', 'updated_at')
    ordering = ('-updated_at',)

    def document_key(self, obj):
        data = obj.data or {}
        for key in ('orderId', 'userId', 'id', 'email', '_id'):
            if data.get(key):
                return data[key]
        return '-'
    document_key.short_description = 'Clave'


@admin.register(SecurityEvent)
class SecurityEventAdmin(admin.ModelAdmin):
    list_display = ('event_type', 'source', 'ip_address', 'path', 'created_at')
    list_filter = ('event_type', 'source')
    search_fields = ('ip_address', 'path', 'user_agent')
    readonly_fields = (
        'event_type', 'source', 'ip_address', 'path', 'user_agent', 'details', 'created_at',
    )
    ordering = ('-created_at',)

    def has_add_permission(self, request):
        return False
