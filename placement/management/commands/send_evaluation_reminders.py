from django.core.management.base import BaseCommand

from placement.services.lifecycle import build_engine


class Command(BaseCommand):
    help = "Notify doctors once about each overdue evaluation they have not submitted."

    def handle(self, *args, **options):
        sent = build_engine().send_evaluation_reminders()
        self.stdout.write(self.style.SUCCESS(f"{sent} reminder(s) sent."))
