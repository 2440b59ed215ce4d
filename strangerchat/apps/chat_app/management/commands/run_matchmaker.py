import threading

from django.core.management.base import BaseCommand

from strangerchat.apps.chat_app.matching import Matchmaker


class Command(BaseCommand):
    help = "Run matchmaker loop(s) against the shared Redis queue"

    def add_arguments(self, parser):
        parser.add_argument(
            "--instances", type=int, default=1,
            help="Number of matchmaker loops to run in this process",
        )

    def handle(self, *args, **options):
        count = max(1, options["instances"])
        stop = threading.Event()
        threads = []
        for i in range(count):
            matchmaker = Matchmaker(name=f"matchmaker-{i}")
            t = threading.Thread(target=matchmaker.run, args=(stop,), name=matchmaker.name, daemon=True)
            t.start()
            threads.append(t)
        self.stdout.write(self.style.SUCCESS(f"Started {count} matchmaker(s), ctrl+c to stop"))

        try:
            while any(t.is_alive() for t in threads):
                for t in threads:
                    t.join(timeout=0.5)
        except KeyboardInterrupt:
            self.stdout.write(self.style.WARNING("Stopping matchmakers..."))
        finally:
            stop.set()
            for t in threads:
                t.join(timeout=5)
        self.stdout.write(self.style.SUCCESS("Matchmakers stopped"))
