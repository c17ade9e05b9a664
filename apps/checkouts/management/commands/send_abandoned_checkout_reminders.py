"""
Envía los recordatorios de checkout abandonado (1.ª etapa a los 10 min de
inactividad, 2.ª a los 20 min). Pensado para ejecutarse desde cron cada minuto.

Uso:
  python manage.py send_abandoned_checkout_reminders
  python manage.py send_abandoned_checkout_reminders --dry-run
"""
from django.core.management.base import BaseCommand

from apps.core.apps import get_services


class Command(BaseCommand):
    help = 'Envía recordatorios de checkout abandonado pendientes.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Mostrar qué checkouts recibirían correo sin enviarlo.',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        summary = get_services().checkouts.process_abandoned_checkouts(dry_run=dry_run)

        if not summary['processed']:
            self.stdout.write(self.style.WARNING('No hay checkouts abandonados pendientes.'))
            return

        self.stdout.write(f"Checkouts a procesar: {summary['processed']}")
        for entry in summary['results']:
            line = f"  - {entry['email']} (etapa {entry['stage'] or '-'}, {entry['minutesElapsed']} min)"
            if entry['status'] == 'sent':
                self.stdout.write(self.style.SUCCESS(f'{line} enviado'))
            elif entry['status'] == 'error':
                self.stderr.write(self.style.ERROR(f'{line} error'))
            else:
                self.stdout.write(f"{line} {entry['status']}")

        if dry_run:
            self.stdout.write(self.style.WARNING('Dry run: no se enviaron correos.'))
            return
        self.stdout.write(self.style.SUCCESS(f"Se enviaron {summary['sent']} recordatorio(s)."))
