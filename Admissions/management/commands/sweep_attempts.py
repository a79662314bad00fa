from django.core.management.base import BaseCommand

from Admissions.lifecycle import sweep_lapsed_attempts


class Command(BaseCommand):
    help = "Auto-submit attempts past their time limit and abandon issued attempts past their TTL."

    def handle(self, *args, **options):
        counts = sweep_lapsed_attempts()
        if not counts:
            self.stdout.write("No lapsed attempts")
            return
        for state, n in sorted(counts.items()):
            self.stdout.write(self.style.SUCCESS(f"{state}: {n}"))
