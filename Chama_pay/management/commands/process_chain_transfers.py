"""
Drive the on-chain leg of completed deposits.

Usage:
    python manage.py process_chain_transfers
    python manage.py process_chain_transfers --limit 20 --skip-confirmations
"""

from django.core.management.base import BaseCommand

from Chama_pay.services.settlement_legs import poll_submitted_legs, process_due_legs


class Command(BaseCommand):
    help = 'Submit due token transfers and confirm submitted ones'

    def add_arguments(self, parser):
        parser.add_argument('--limit', type=int, default=50,
                            help='Maximum number of transfers handled per phase (default: 50)')
        parser.add_argument('--skip-confirmations', action='store_true',
                            help='Do not poll the chain for submitted transfers')

    def handle(self, *args, **options):
        limit = options['limit']

        stats = process_due_legs(limit=limit)
        self.stdout.write(self.style.SUCCESS(
            f"Submitted {stats['submitted']} transfer(s), {stats['retrying']} scheduled for retry"
        ))
        if stats['dead']:
            self.stdout.write(self.style.ERROR(f"{stats['dead']} transfer(s) dead-lettered"))

        if options['skip_confirmations']:
            return

        confirmed = poll_submitted_legs(limit=limit)
        self.stdout.write(self.style.SUCCESS(f'Confirmed {confirmed} transfer(s)'))
