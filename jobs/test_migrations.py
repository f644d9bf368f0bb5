from io import StringIO

from django.core.management import call_command
from django.db import connection
from django.test import TestCase

TABLES = (
    "dealer",
    "technician",
    "job",
    "job_bid",
    "job_event",
    "payment_transaction",
    "payment_webhook_event",
    "warranty_record",
)


class MigrationStateTests(TestCase):
    def test_models_have_no_pending_migrations(self):
        out = StringIO()
        try:
            call_command("makemigrations", "--check", "--dry-run", stdout=out, stderr=out)
        except SystemExit:
            self.fail(f"models changed without a migration:\n{out.getvalue()}")

    def test_initial_migrations_create_every_table(self):
        tables = set(connection.introspection.table_names())

        for table in TABLES:
            self.assertIn(table, tables)
