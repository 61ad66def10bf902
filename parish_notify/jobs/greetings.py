"""
Birthday and anniversary greeting dispatcher.

Run with: python -m parish_notify.jobs.greetings

This job:
1. Opens a RUNNING run log
2. For every active parish, resolves today's local date and checks the send window
3. Matches opted-in members whose birthday or anniversary is today
4. Sends each due greeting once (greeting log entry + delivery ledger)
5. Closes the run log as SUCCESS with per-reason counts

A failure inside one parish is counted and the run moves on. The run log is
only marked FAILED for an error outside the per-parish boundary, which is
then re-raised.
"""

import argparse
import asyncio
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime

from sqlalchemy import insert, update
from sqlalchemy.ext.asyncio import AsyncSession

from parish_notify.config import get_config
from parish_notify.core.database import AsyncSessionLocal
from parish_notify.core.datetime_utils import (
    is_in_send_window,
    is_legacy_utc_offset_timezone,
    is_valid_timezone,
    parish_local_date_parts,
    to_naive_utc,
    utc_now,
)
from parish_notify.core.logging import get_logger, setup_logging
from parish_notify.models.greeting import GreetingRunLog, GreetingType, RunStatus
from parish_notify.schemas.delivery import DeliveryResult
from parish_notify.schemas.greetings import RunSummary
from parish_notify.services.delivery_ledger import CONCURRENT_SKIP_REASONS
from parish_notify.services.greetings import (
    CandidateSnapshot,
    GreetingCandidate,
    GreetingParish,
    get_greeting_candidates,
    load_greeting_parishes,
    send_greeting_if_eligible,
)
from parish_notify.services.transports import get_missing_email_env

logger = get_logger(__name__)

SendGreetingFn = Callable[
    [AsyncSession, GreetingParish, GreetingCandidate, GreetingType, str],
    Awaitable[DeliveryResult],
]
GetCandidatesFn = Callable[[AsyncSession, uuid.UUID, int, int, str], Awaitable[CandidateSnapshot]]


async def _start_run_log(
    db: AsyncSession, run_id: str, request_id: str, started_at: datetime
) -> None:
    await db.execute(
        insert(GreetingRunLog).values(
            id=run_id,
            request_id=request_id,
            started_at=started_at,
            status=RunStatus.RUNNING,
        )
    )
    await db.commit()


async def _finish_run_log(
    db: AsyncSession,
    summary: RunSummary,
    status: RunStatus,
    error_summary: str | None = None,
) -> None:
    await db.execute(
        update(GreetingRunLog)
        .where(GreetingRunLog.id == summary.run_id)
        .values(
            finished_at=summary.finished_at,
            status=status,
            planned_count=summary.emails_attempted + summary.skipped,
            sent_count=summary.sent,
            failed_count=summary.failed,
            skipped_count=summary.skipped,
            missing_env=summary.missing_env or None,
            reason_counts=summary.reason_counts.model_dump(by_alias=True),
            error_summary=error_summary[:2000] if error_summary else None,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def _process_parish(
    db: AsyncSession,
    parish: GreetingParish,
    summary: RunSummary,
    now_utc: datetime,
    send_greeting_fn: SendGreetingFn,
    get_candidates_fn: GetCandidatesFn,
) -> None:
    counts = summary.reason_counts
    log = logger.bind(
        run_id=summary.run_id, request_id=summary.request_id, parish_id=str(parish.id)
    )

    if not parish.greetings_enabled:
        counts.disabled += 1
        return

    timezone = parish.timezone or "UTC"
    if not parish.timezone:
        counts.missing_timezone += 1
        log.warning("greetings_parish_missing_timezone")
    elif not is_legacy_utc_offset_timezone(timezone) and not is_valid_timezone(timezone):
        counts.invalid_timezone += 1
        log.bind(timezone=timezone).error("greetings_parish_invalid_timezone")
        return

    local = parish_local_date_parts(now_utc, timezone)
    in_window = is_in_send_window(
        local.hour,
        local.minute,
        parish.send_hour_local,
        parish.send_minute_local,
        get_config().greetings.window_minutes,
    )
    log.bind(
        timezone=timezone,
        timezone_mode=local.mode,
        local_now=local.local_label,
        send_time=f"{parish.send_hour_local:02d}:{parish.send_minute_local:02d}",
        in_window=in_window,
    ).info("greetings_parish_evaluated")

    if not in_window:
        counts.not_send_window += 1
        return

    summary.matched_parishes += 1

    snapshot = await get_candidates_fn(db, parish.id, local.month, local.day, local.date_key)
    candidates = snapshot.summary
    counts.missing_email_memberships += candidates.missing_email_memberships

    if candidates.date_matched_memberships == 0:
        counts.no_candidates += 1
        return

    # Greetings already logged today are never handed to the transport
    summary.skipped += candidates.already_sent_today
    counts.already_sent += candidates.already_sent_today

    log.bind(
        local_date=local.date_key,
        opted_in=candidates.opted_in_memberships,
        date_matched=candidates.date_matched_memberships,
        missing_email=candidates.missing_email_memberships,
        already_sent=candidates.already_sent_today,
        sendable=candidates.sendable_today,
    ).info("greetings_candidates_resolved")

    if summary.missing_env:
        # Every sendable greeting is a configuration failure; no transport calls
        counts.missing_email_config += candidates.sendable_today
        summary.failed += candidates.sendable_today
        summary.emails_attempted += candidates.sendable_today
        return

    for candidate in snapshot.candidates:
        for greeting_type in candidate.due_greetings():
            greeting_log = log.bind(
                user_id=str(candidate.user_id),
                local_date=local.date_key,
                greeting_type=greeting_type.value,
            )
            try:
                result = await send_greeting_fn(
                    db, parish, candidate, greeting_type, local.date_key
                )
            except Exception as e:
                # One broken greeting must not stop the rest of the parish
                await db.rollback()
                summary.failed += 1
                summary.emails_attempted += 1
                greeting_log.bind(error=str(e)).error("greeting_send_error")
                continue

            if result.status == "SENT":
                summary.sent += 1
                summary.emails_attempted += 1
            elif result.status == "FAILED":
                summary.failed += 1
                summary.emails_attempted += 1
            else:
                summary.skipped += 1
                if result.error in CONCURRENT_SKIP_REASONS:
                    counts.in_flight += 1
                else:
                    counts.already_sent += 1

            greeting_log.bind(status=result.status, reason=result.error).info(
                "greeting_result"
            )


async def run_greetings_job(
    db: AsyncSession,
    request_id: str | None = None,
    now_utc: datetime | None = None,
    send_greeting_fn: SendGreetingFn = send_greeting_if_eligible,
    get_candidates_fn: GetCandidatesFn = get_greeting_candidates,
) -> RunSummary:
    """
    Run the greeting dispatcher once.

    Args:
        db: Database session (committed by this function)
        request_id: Correlation id for logs, generated if not provided
        now_utc: Current instant, defaults to now
        send_greeting_fn: Sends one greeting (replaceable in tests)
        get_candidates_fn: Loads a parish's candidates (replaceable in tests)

    Returns:
        RunSummary with counts and missing-config diagnostics

    Raises:
        Exception: Any error outside the per-parish boundary, after the run
            log has been marked FAILED
    """
    now_utc = to_naive_utc(now_utc) if now_utc else utc_now()
    summary = RunSummary(
        run_id=str(uuid.uuid4()),
        request_id=request_id or uuid.uuid4().hex,
        started_at=now_utc,
        missing_env=get_missing_email_env(),
    )
    log = logger.bind(run_id=summary.run_id, request_id=summary.request_id)

    await _start_run_log(db, summary.run_id, summary.request_id, now_utc)

    try:
        parishes = await load_greeting_parishes(db)
        log.bind(
            now_utc=now_utc.isoformat(),
            parish_count=len(parishes),
            missing_env=summary.missing_env,
        ).info("greetings_run_started")

        for parish in parishes:
            try:
                await _process_parish(
                    db, parish, summary, now_utc, send_greeting_fn, get_candidates_fn
                )
            except Exception as e:
                await db.rollback()
                summary.reason_counts.parish_errors += 1
                log.bind(parish_id=str(parish.id), error=str(e)).error(
                    "greetings_parish_failed"
                )

        summary.finished_at = utc_now()
        await _finish_run_log(db, summary, RunStatus.SUCCESS)
    except Exception as e:
        await db.rollback()
        summary.finished_at = utc_now()
        await _finish_run_log(db, summary, RunStatus.FAILED, error_summary=str(e))
        log.bind(error=str(e)).error("greetings_run_failed")
        raise

    log.bind(
        sent=summary.sent,
        skipped=summary.skipped,
        failed=summary.failed,
        emails_attempted=summary.emails_attempted,
        matched_parishes=summary.matched_parishes,
        reason_counts=summary.reason_counts.model_dump(by_alias=True),
    ).info("greetings_run_completed")
    return summary


async def main(request_id: str | None = None) -> RunSummary:
    """Run one dispatcher pass with its own database session."""
    async with AsyncSessionLocal() as db:
        return await run_greetings_job(db, request_id=request_id)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the greeting dispatcher once")
    parser.add_argument("--request-id", default=None, help="Correlation id for logs")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(main(request_id=args.request_id))
