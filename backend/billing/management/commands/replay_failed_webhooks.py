"""Management command to replay dead-lettered webhook deliveries."""
from __future__ import annotations

from typing import Iterable, Optional

from django.core.management.base import BaseCommand, CommandError

from billing.models import FailedWebhook
from billing.services import dead_letter
from billing.services.results import DeadLetterError


class Command(BaseCommand):
    help = "Replay stored failed webhooks through the normal processing pipeline."

    def add_arguments(self, parser) -> None:
        parser.add_argument(
            "--id",
            dest="failed_ids",
            action="append",
            type=int,
            help="Replay only the specified failed webhook id. Can be supplied multiple times.",
        )
        parser.add_argument(
            "--limit",
            type=int,
            default=None,
            help="Maximum number of failed webhooks to replay in this run.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Preview failed webhooks that would be replayed without performing any changes.",
        )
        parser.add_argument(
            "--include-abandoned",
            action="store_true",
            help="Also replay rows that exhausted their automatic retries.",
        )

    def handle(self, *args, **options) -> None:
        failed_ids: Optional[Iterable[int]] = options.get("failed_ids")
        limit: Optional[int] = options.get("limit")
        dry_run: bool = options.get("dry_run")

        statuses = [FailedWebhook.Status.PENDING]
        if options.get("include_abandoned"):
            statuses.append(FailedWebhook.Status.ABANDONED)

        queryset = FailedWebhook.objects.filter(status__in=statuses).order_by("created_at", "id")
        if failed_ids:
            queryset = queryset.filter(pk__in=list(failed_ids))

        if limit is not None:
            queryset = queryset[:limit]

        rows = list(queryset.values_list("pk", "source", "error_message"))
        total = len(rows)
        if total == 0:
            self.stdout.write(self.style.WARNING("No failed webhooks matched the requested filters."))
            return

        resolved = 0
        failed = 0

        for failed_id, source, error_message in rows:
            self.stdout.write(f"Replaying failed webhook {failed_id} ({source}): {error_message[:80]}")
            if dry_run:
                continue

            try:
                row = dead_letter.retry(failed_id, manual=True)
            except DeadLetterError as exc:
                failed += 1
                self.stdout.write(self.style.WARNING(str(exc)))
                continue

            if row.status == FailedWebhook.Status.RESOLVED:
                resolved += 1
            else:
                failed += 1

        if dry_run:
            self.stdout.write(
                self.style.WARNING(f"Dry run complete. {total} failed webhooks would be replayed.")
            )
            return

        summary = f"Replay complete: {resolved} resolved, {failed} failed, {total} total."
        if failed:
            raise CommandError(summary)
        self.stdout.write(self.style.SUCCESS(summary))
