from django.core.management.base import BaseCommand

from Chama_pay.services.ledger import expire_stale_pending


class Command(BaseCommand):
    help = 'Fail PENDING deposits and withdrawals whose callback never arrived'

    def add_arguments(self, parser):
        parser.add_argument('--minutes', type=int, default=None,
                            help='Age threshold in minutes (default: SETTLEMENT_PENDING_TIMEOUT_MINUTES)')

    def handle(self, *args, **options):
        expired = expire_stale_pending(older_than_minutes=options['minutes'])
        if expired:
            self.stdout.write(self.style.WARNING(f'Expired {expired} pending settlement(s)'))
        else:
            self.stdout.write(self.style.SUCCESS('No stale pending settlements'))
