from django.core.management.base import BaseCommand

from Chama_pay.services.loans import mark_overdue_loans


class Command(BaseCommand):
    help = 'Move ACTIVE loans past their due date to OVERDUE'

    def handle(self, *args, **options):
        overdue = mark_overdue_loans()
        self.stdout.write(self.style.SUCCESS(f'Marked {overdue} loan(s) overdue'))
