from django.db import models


class Document(models.Model):
    """Documento JSON del store, agrupado por base de datos lógica y colección."""

    database = models.CharField('Base de datos', max_length=80)
    collection = models.CharField('Colección', max_length=80)
    data = models.JSONField('Datos', default=dict)
    created_at = models.DateTimeField('Creado', auto_now_add=True)
    updated_at = models.DateTimeField('Actualizado', auto_now=True)

    class Meta:
        verbose_name = 'Documento'
        verbose_name_plural = 'Documentos'
        ordering = ['id']
        indexes = [
            models.Index(fields=['database', 'collection']),
        ]

    def __str__(self):
        return f'{self.collection}:{self.data.get("_id", self.pk)}'


class SecurityEvent(models.Model):
    """Eventos de seguridad detectados en endpoints públicos."""

    EVENT_CHOICES = [
        ('webhook_signature_invalid', 'Firma de webhook inválida'),
        ('amount_mismatch', 'Importe del cliente no coincide'),
    ]
    event_type = models.CharField(
        'Tipo de evento',
        max_length=40,
        choices=EVENT_CHOICES,
    )
    source = models.CharField('Origen', max_length=80)
    ip_address = models.GenericIPAddressField('IP', null=True, blank=True)
    path = models.CharField('Ruta', max_length=255, blank=True)
    user_agent = models.CharField('User agent', max_length=255, blank=True)
    details = models.JSONField('Detalles', default=dict, blank=True)
    created_at = models.DateTimeField('Fecha', auto_now_add=True)

    class Meta:
        verbose_name = 'Evento de seguridad'
        verbose_name_plural = 'Eventos de seguridad'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['-created_at']),
            models.Index(fields=['event_type', '-created_at']),
        ]

    def __str__(self):
        return f'{self.get_event_type_display()} ({self.source})'
