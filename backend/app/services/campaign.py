"""
Campaign driver: sends verification links in batches.

Two independent tracks share the same flow:

  employee   mail to the employee only; selects email_sent = false
  manager    mail to the employee with the manager in CC; selects
             manager_email_sent = false and a known manager_email

For each selected employee a fresh form token is issued, the message is
handed to the notifier, and only then is the track flag flipped.  Sends in a
batch run concurrently.  A failed send is logged and reported in the batch
result; its flag stays unset, so the next batch picks it up again.  That is
the only retry mechanism: resetting a track is the manual escape hatch.

Tokens are minted per send and never registered, so an employee who received
several mails holds several valid links.  Single submission is enforced by the
store (see verification.submit_form), not by the token.

Environment variables
---------------------
MAIL_MAX_CONCURRENCY  Upper bound on simultaneous SMTP sessions (default: 10).
"""

import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Optional, Union

from dotenv import load_dotenv

from app.models.employee import BatchResult, LastSentTimes, SendFailure, Track
from app.services.employee_store import EmployeeStore
from app.services.errors import StoreError, TransportFailure
from app.services.mail_template import render_verification_email
from app.services.notifier import Notifier
from app.services.tokens import KIND_EMAIL, build_form_link, issue_form_token

load_dotenv()

logger = logging.getLogger(__name__)

MAIL_MAX_CONCURRENCY = int(os.getenv("MAIL_MAX_CONCURRENCY", "10"))


def _deliver(store: EmployeeStore, notifier: Notifier, employee: dict, track: Track) -> None:
    """Send one notification and flip the track flag.  Runs in a worker thread."""
    email = employee["internet_email"]
    cc = employee.get("manager_email") if track == Track.MANAGER else None

    token = issue_form_token(email, KIND_EMAIL)
    subject, body = render_verification_email(email, build_form_link(token), manager_email=cc)
    notifier.send(email, cc, subject, body)

    store.mark_sent(employee["id"], track, datetime.now(timezone.utc))


async def send_batch(
    store: EmployeeStore,
    notifier: Notifier,
    track: Union[Track, str],
    batch_size: int,
) -> BatchResult:
    """
    Send one batch of up to ``batch_size`` notifications on ``track``.

    Raises:
        ValueError: batch_size < 1 or unknown track.
    """
    track = Track(track)
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    employees = store.select_unsent(track, batch_size)
    semaphore = asyncio.Semaphore(max(1, MAIL_MAX_CONCURRENCY))

    async def _send_one(employee: dict) -> Optional[SendFailure]:
        email = employee["internet_email"]
        async with semaphore:
            try:
                await asyncio.to_thread(_deliver, store, notifier, employee, track)
            except (TransportFailure, StoreError) as exc:
                logger.error(f"{track.value} notification to {email} failed: {exc.message}")
                return SendFailure(email=email, error=exc.message)
            except Exception as exc:
                logger.error(f"{track.value} notification to {email} failed unexpectedly: {exc}", exc_info=True)
                return SendFailure(email=email, error="Unexpected error")
        return None

    outcomes = await asyncio.gather(*(_send_one(e) for e in employees))
    failures = [f for f in outcomes if f is not None]

    remaining = store.count_unsent(track)
    sent = len(employees) - len(failures)
    logger.info(
        f"{track.value} batch: {sent} sent, {len(failures)} failed, {remaining} remaining"
    )
    return BatchResult(
        track=track,
        sent=sent,
        failed=len(failures),
        remaining=remaining,
        failures=failures,
    )


def remaining_count(store: EmployeeStore, track: Union[Track, str]) -> int:
    return store.count_unsent(Track(track))


def reset_flags(store: EmployeeStore, track: Union[Track, str]) -> int:
    """Mark every employee unsent on ``track``; returns how many were reset."""
    track = Track(track)
    reset = store.reset_track(track)
    logger.info(f"{track.value} track reset for {reset} employees")
    return reset


def last_sent_times(store: EmployeeStore) -> LastSentTimes:
    return LastSentTimes(
        last_email_sent_at=store.latest_sent_at(Track.EMPLOYEE),
        last_manager_email_sent_at=store.latest_sent_at(Track.MANAGER),
    )
