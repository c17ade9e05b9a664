"""
Comando de reconciliación de pagos con Stripe.

Consulta en Stripe el PaymentIntent de los pedidos cuyo pago sigue
pendiente o en proceso y aplica su estado con los mismos handlers del webhook.

Uso:
    python manage.py reconcile_payments
    python manage.py reconcile_payments --hours 48      # últimas 48 h (default 24)
    python manage.py reconcile_payments --dry-run       # solo muestra, no guarda
    python manage.py reconcile_payments --order ORD-20260224-5B6B6A4D
"""
from django.core.management.base import BaseCommand

from apps.core.apps import get_services


class Command(BaseCommand):
    help = 'Reconcilia pedidos pendientes consultando la API de Stripe'

    def add_arguments(self, parser):
        parser.add_argument(
            '--hours',
            type=int,
            default=24,
            help='Rango de tiempo en horas hacia atrás (default: 24)',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            default=False,
            help='Solo muestra resultados sin modificar la BD',
        )
        parser.add_argument(
            '--order',
            type=str,
            default='',
            help='Reconciliar un solo pedido por su número',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        if dry_run:
            self.stdout.write(self.style.WARNING('Modo DRY-RUN: no se guardarán cambios'))

        results = get_services().payments.reconcile(
            hours=max(0, options['hours']),
            order_id=options['order'].strip() or None,
            dry_run=dry_run,
        )
        if not results:
            self.stdout.write('No hay pedidos pendientes con PaymentIntent.')
            return

        updated = skipped = errors = 0
        for entry in results:
            line = f"  [{entry['orderId']}] pi={entry['paymentIntentId']} → {entry['status']}"
            if entry['status'] == 'error':
                self.stdout.write(self.style.ERROR(f"{line} ({entry.get('error', '')})"))
                errors += 1
            elif entry.get('changed'):
                self.stdout.write(self.style.SUCCESS(f'{line} (actualizado)'))
                updated += 1
            else:
                self.stdout.write(f'{line} (sin cambio)')
                skipped += 1

        self.stdout.write(
            f'\nResultado: {updated} actualizado(s), {skipped} sin cambio, {errors} error(es).'
        )
