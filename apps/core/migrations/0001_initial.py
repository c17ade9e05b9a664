from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Document',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('database', models.CharField(max_length=80, verbose_name='Base de datos')),
                ('collection', models.CharField(max_length=80, verbose_name='Colección')),
                ('data', models.JSONField(default=dict, verbose_name='Datos')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Creado')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Actualizado')),
            ],
            options={
                'verbose_name': 'Documento',
                'verbose_name_plural': 'Documentos',
                'ordering': ['id'],
                'indexes': [models.Index(fields=['database', 'collection'], name='core_docume_databas_5c1f0e_idx')],
            },
        ),
        migrations.CreateModel(
            name='SecurityEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('event_type', models.CharField(choices=[('webhook_signature_invalid', 'Firma de webhook inválida'), ('amount_mismatch', 'Importe del cliente no coincide')], max_length=40, verbose_name='Tipo de evento')),
                ('source', models.CharField(max_length=80, verbose_name='Origen')),
                ('ip_address', models.GenericIPAddressField(blank=True, null=True, verbose_name='IP')),
                ('path', models.CharField(blank=True, max_length=255, verbose_name='Ruta')),
                ('user_agent', models.CharField(blank=True, max_length=255, verbose_name='User agent')),
                ('details', models.JSONField(blank=True, default=dict, verbose_name='Detalles')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Fecha')),
            ],
            options={
                'verbose_name': 'Evento de seguridad',
                'verbose_name_plural': 'Eventos de seguridad',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['-created_at'], name='core_securi_created_8534a4_idx'),
                    models.Index(fields=['event_type', '-created_at'], name='core_securi_event_t_0d388e_idx'),
                ],
            },
        ),
    ]
