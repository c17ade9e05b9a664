"""
Envía el aviso de pago fallido (con enlace de reintento de un solo uso) a
los checkouts fallidos con más de PAYMENT_FAILURE_EMAIL_MINUTES minutos.

Uso:
  python manage.py send_payment_failure_emails
  python manage.py send_payment_failure_emails --dry-run
"""
from django.core.management.base import BaseCommand

from apps.core.apps import get_services


class Command(BaseCommand):
    help = 'Envía emails de pago fallido pendientes.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Mostrar qué pedidos recibirían correo sin enviarlo.',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        summary = get_services().checkouts.process_failed_checkouts(dry_run=dry_run)

        if not summary['processed']:
            self.stdout.write(self.style.WARNING('No hay pagos fallidos pendientes de aviso.'))
            return

        for entry in summary['results']:
            line = f"  - {entry['orderId']} ({entry['email']})"
            if entry['status'] == 'sent':
                self.stdout.write(self.style.SUCCESS(f'{line} enviado'))
            elif entry['status'] == 'error':
                self.stderr.write(self.style.ERROR(f'{line} error'))
            else:
                self.stdout.write(f"{line} {entry['status']}")

        if dry_run:
            self.stdout.write(self.style.WARNING('Dry run: no se enviaron correos.'))
            return
        self.stdout.write(self.style.SUCCESS(f"Se enviaron {summary['sent']} aviso(s)."))
