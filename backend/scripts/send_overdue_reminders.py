"""Daily job: email reminders for sent invoices past their due date."""
from __future__ import annotations

import argparse
import logging

from app.core.logging import configure_logging
from app.core.settings import settings
from app.db.session import session_scope
from app.services.email import send_overdue_reminder
from app.services.invoices import sweep_overdue_reminders

logger = logging.getLogger("scripts.send_overdue_reminders")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--max-reminders",
        type=int,
        default=settings.invoice_max_reminders,
        help="Skip invoices that already received this many reminders",
    )
    args = parser.parse_args()

    configure_logging(level=settings.log_level)
    with session_scope() as db:
        sent = sweep_overdue_reminders(db, notify=send_overdue_reminder, max_reminders=args.max_reminders)
    logger.info("overdue_reminders_sent count=%s", sent)
    print(f"Sent {sent} overdue reminder(s).")


if __name__ == "__main__":
    main()
