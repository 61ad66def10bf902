"""Birthday and anniversary greeting candidates and per-greeting delivery.

Parish and membership reads follow the deployed schema capabilities: the
parish greeting settings and the membership-level opt-in are only selected
when the schema has them, with documented defaults otherwise.
"""

import html
import re
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from jinja2 import Environment, FileSystemLoader
from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from parish_notify.config import get_config, get_settings
from parish_notify.core.logging import get_logger
from parish_notify.core.schema import get_schema_capabilities
from parish_notify.models.delivery import DeliveryChannel
from parish_notify.models.greeting import GreetingLogEntry, GreetingType
from parish_notify.models.membership import Membership
from parish_notify.models.parish import Parish
from parish_notify.models.user import User
from parish_notify.schemas.delivery import DedupeKey, DeliveryRequest, DeliveryResult
from parish_notify.services.delivery_ledger import SKIP_ALREADY_SENT, attempt_delivery

logger = get_logger(__name__)

template_dir = Path(__file__).parent.parent / "emails" / "templates"
jinja_env = Environment(loader=FileSystemLoader(template_dir), autoescape=True)

DEFAULT_FIRST_NAME = "Friend"

TEMPLATE_NAME_BY_TYPE = {
    GreetingType.BIRTHDAY: "birthdayGreeting",
    GreetingType.ANNIVERSARY: "anniversaryGreeting",
}


@dataclass(frozen=True)
class GreetingParish:
    """Parish fields the dispatcher needs, with defaults for missing columns."""

    id: uuid.UUID
    name: str
    timezone: str | None
    logo_url: str | None
    greetings_enabled: bool
    send_hour_local: int
    send_minute_local: int
    birthday_template: str | None = None
    anniversary_template: str | None = None

    def template_for(self, greeting_type: GreetingType) -> str | None:
        if greeting_type == GreetingType.BIRTHDAY:
            return self.birthday_template
        return self.anniversary_template


@dataclass(frozen=True)
class GreetingMembershipRow:
    user_id: uuid.UUID
    email: str | None
    name: str | None
    birthday_month: int | None
    birthday_day: int | None
    anniversary_month: int | None
    anniversary_day: int | None


@dataclass(frozen=True)
class GreetingCandidate:
    user_id: uuid.UUID
    first_name: str
    email: str
    send_birthday: bool
    send_anniversary: bool
    already_sent_birthday: bool
    already_sent_anniversary: bool

    def due_greetings(self) -> list[GreetingType]:
        due = []
        if self.send_birthday and not self.already_sent_birthday:
            due.append(GreetingType.BIRTHDAY)
        if self.send_anniversary and not self.already_sent_anniversary:
            due.append(GreetingType.ANNIVERSARY)
        return due


@dataclass
class CandidateSummary:
    opted_in_memberships: int = 0
    date_matched_memberships: int = 0
    missing_email_memberships: int = 0
    already_sent_today: int = 0
    sendable_today: int = 0


@dataclass
class CandidateSnapshot:
    candidates: list[GreetingCandidate] = field(default_factory=list)
    summary: CandidateSummary = field(default_factory=CandidateSummary)


def first_name_from(name: str | None) -> str:
    parts = (name or "").strip().split()
    return parts[0] if parts else DEFAULT_FIRST_NAME


def build_candidate_snapshot(
    memberships: list[GreetingMembershipRow],
    sent_logs: list[tuple[uuid.UUID, GreetingType]],
    month: int,
    day: int,
) -> CandidateSnapshot:
    """Match opted-in members against today's date and today's sent log.

    Members without an email address are counted and left out.
    """
    sent: dict[uuid.UUID, set[GreetingType]] = {}
    for user_id, greeting_type in sent_logs:
        sent.setdefault(user_id, set()).add(greeting_type)

    snapshot = CandidateSnapshot()
    summary = snapshot.summary
    summary.opted_in_memberships = len(memberships)

    for row in memberships:
        email = (row.email or "").strip()
        if not email:
            summary.missing_email_memberships += 1
            continue

        send_birthday = row.birthday_month == month and row.birthday_day == day
        send_anniversary = row.anniversary_month == month and row.anniversary_day == day
        sent_types = sent.get(row.user_id, set())
        sent_birthday = GreetingType.BIRTHDAY in sent_types
        sent_anniversary = GreetingType.ANNIVERSARY in sent_types

        for due, done in ((send_birthday, sent_birthday), (send_anniversary, sent_anniversary)):
            if due and done:
                summary.already_sent_today += 1
            elif due:
                summary.sendable_today += 1

        snapshot.candidates.append(
            GreetingCandidate(
                user_id=row.user_id,
                first_name=first_name_from(row.name),
                email=email,
                send_birthday=send_birthday,
                send_anniversary=send_anniversary,
                already_sent_birthday=sent_birthday,
                already_sent_anniversary=sent_anniversary,
            )
        )

    summary.date_matched_memberships = summary.sendable_today + summary.already_sent_today
    return snapshot


async def load_greeting_parishes(db: AsyncSession) -> list[GreetingParish]:
    """Active parishes with their greeting settings (or defaults on older schemas)."""
    caps = get_schema_capabilities()
    defaults = get_config().greetings

    columns = [Parish.id, Parish.name, Parish.timezone, Parish.logo_url]
    if caps.parish_greeting_settings:
        columns += [
            Parish.greetings_enabled,
            Parish.greetings_send_hour_local,
            Parish.greetings_send_minute_local,
            Parish.birthday_greeting_template,
            Parish.anniversary_greeting_template,
        ]

    result = await db.execute(
        select(*columns).where(Parish.deactivated_at.is_(None)).order_by(Parish.name)
    )

    parishes = []
    for row in result.all():
        if caps.parish_greeting_settings:
            parishes.append(
                GreetingParish(
                    id=row.id,
                    name=row.name,
                    timezone=row.timezone,
                    logo_url=row.logo_url,
                    greetings_enabled=row.greetings_enabled,
                    send_hour_local=row.greetings_send_hour_local,
                    send_minute_local=row.greetings_send_minute_local,
                    birthday_template=row.birthday_greeting_template,
                    anniversary_template=row.anniversary_greeting_template,
                )
            )
        else:
            parishes.append(
                GreetingParish(
                    id=row.id,
                    name=row.name,
                    timezone=row.timezone,
                    logo_url=row.logo_url,
                    greetings_enabled=True,
                    send_hour_local=defaults.default_send_hour_local,
                    send_minute_local=defaults.default_send_minute_local,
                )
            )
    return parishes


async def get_greeting_candidates(
    db: AsyncSession,
    parish_id: uuid.UUID,
    month: int,
    day: int,
    date_key: str,
) -> CandidateSnapshot:
    """Opted-in, non-deleted members whose birthday or anniversary is today."""
    caps = get_schema_capabilities()
    if caps.membership_greeting_opt_in:
        opt_in = Membership.allow_parish_greetings == True  # noqa: E712
    else:
        opt_in = User.greetings_opt_in == True  # noqa: E712

    result = await db.execute(
        select(
            Membership.user_id,
            User.email,
            User.name,
            User.birthday_month,
            User.birthday_day,
            User.anniversary_month,
            User.anniversary_day,
        )
        .join(User, User.id == Membership.user_id)
        .where(
            Membership.parish_id == parish_id,
            Membership.is_active == True,  # noqa: E712
            User.deleted_at.is_(None),
            opt_in,
            or_(
                and_(User.birthday_month == month, User.birthday_day == day),
                and_(User.anniversary_month == month, User.anniversary_day == day),
            ),
        )
        .order_by(Membership.created_at)
    )
    memberships = [GreetingMembershipRow(*row) for row in result.all()]

    sent_logs: list[tuple[uuid.UUID, GreetingType]] = []
    if memberships:
        log_result = await db.execute(
            select(GreetingLogEntry.user_id, GreetingLogEntry.type).where(
                GreetingLogEntry.parish_id == parish_id,
                GreetingLogEntry.date_key == date_key,
                GreetingLogEntry.user_id.in_([m.user_id for m in memberships]),
            )
        )
        sent_logs = [(row.user_id, row.type) for row in log_result.all()]

    return build_candidate_snapshot(memberships, sent_logs, month, day)


def _html_to_text(markup: str) -> str:
    text = re.sub(r"<(br|/p|/div)\s*/?>", "\n", markup, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text)
    return "\n".join(line.strip() for line in text.splitlines() if line.strip())


def render_greeting_email(
    greeting_type: GreetingType,
    first_name: str,
    parish_name: str,
    template_html: str | None = None,
    logo_url: str | None = None,
) -> tuple[str, str, str]:
    """
    Render a greeting email.

    A parish's custom template may use ``{firstName}`` and ``{parishName}``
    placeholders; the substituted values are HTML-escaped.

    Returns:
        (subject, html, text)
    """
    is_birthday = greeting_type == GreetingType.BIRTHDAY
    custom_body = None
    if template_html:
        custom_body = template_html.replace("{firstName}", html.escape(first_name)).replace(
            "{parishName}", html.escape(parish_name)
        )

    template = jinja_env.get_template("greeting.html")
    body = template.render(
        title="Happy Birthday" if is_birthday else "Happy Anniversary",
        preview_text=(
            "A birthday greeting from your parish"
            if is_birthday
            else "An anniversary greeting from your parish"
        ),
        greeting_type="birthday" if is_birthday else "anniversary",
        first_name=first_name,
        parish_name=parish_name,
        custom_body=custom_body,
        logo_url=logo_url,
        profile_url=f"{get_settings().app_url}/profile",
    )
    subject = (
        f"Happy Birthday from {parish_name}"
        if is_birthday
        else f"Happy Anniversary from {parish_name}"
    )
    # Text part skips the hidden preview line
    text = _html_to_text(re.sub(r"<span[^>]*display: none;[^>]*>.*?</span>", "", body))
    return subject, body, text


async def _greeting_already_logged(
    db: AsyncSession,
    parish_id: uuid.UUID,
    user_id: uuid.UUID,
    greeting_type: GreetingType,
    date_key: str,
) -> bool:
    result = await db.execute(
        select(GreetingLogEntry.id).where(
            GreetingLogEntry.parish_id == parish_id,
            GreetingLogEntry.user_id == user_id,
            GreetingLogEntry.type == greeting_type,
            GreetingLogEntry.date_key == date_key,
        )
    )
    return result.scalar_one_or_none() is not None


async def _write_greeting_log(
    db: AsyncSession,
    parish_id: uuid.UUID,
    user_id: uuid.UUID,
    greeting_type: GreetingType,
    date_key: str,
) -> None:
    db.add(
        GreetingLogEntry(
            parish_id=parish_id,
            user_id=user_id,
            type=greeting_type,
            date_key=date_key,
        )
    )
    try:
        await db.commit()
    except IntegrityError:
        # Another run logged the same greeting first
        await db.rollback()
        logger.bind(
            parish_id=str(parish_id),
            user_id=str(user_id),
            greeting_type=greeting_type.value,
            date_key=date_key,
        ).warning("greeting_log_conflict")


async def send_greeting_if_eligible(
    db: AsyncSession,
    parish: GreetingParish,
    candidate: GreetingCandidate,
    greeting_type: GreetingType,
    date_key: str,
) -> DeliveryResult:
    """
    Send one greeting unless today's log entry already exists.

    The log entry is checked right before the send, then the delivery ledger
    applies its own dedupe key for retries within a run. The log entry is
    written after a successful send, or when the ledger reports the key as
    already sent (a previous run crashed before logging).

    Args:
        db: Database session
        parish: Parish sending the greeting
        candidate: Recipient
        greeting_type: BIRTHDAY or ANNIVERSARY
        date_key: Parish-local date (YYYY-MM-DD)

    Returns:
        DeliveryResult from the ledger, or SKIPPED if already logged
    """
    if await _greeting_already_logged(db, parish.id, candidate.user_id, greeting_type, date_key):
        logger.bind(
            parish_id=str(parish.id),
            user_id=str(candidate.user_id),
            greeting_type=greeting_type.value,
            date_key=date_key,
        ).debug("greeting_already_logged")
        return DeliveryResult(status="SKIPPED", error="already_logged")

    subject, body, text = render_greeting_email(
        greeting_type,
        first_name=candidate.first_name,
        parish_name=parish.name,
        template_html=parish.template_for(greeting_type),
        logo_url=parish.logo_url,
    )
    message_type = f"GREETING_{greeting_type.value}"
    request = DeliveryRequest(
        channel=DeliveryChannel.EMAIL,
        type=message_type,
        template=TEMPLATE_NAME_BY_TYPE[greeting_type],
        dedupe=DedupeKey(
            type=message_type,
            parish_id=parish.id,
            user_id=candidate.user_id,
            date_key=date_key,
        ),
        user_id=candidate.user_id,
        parish_id=parish.id,
        to_email=candidate.email,
        subject=subject,
        html=body,
        text=text,
        context={"date_key": date_key},
    )
    result = await attempt_delivery(db, request)

    if result.status == "SENT" or result.error == SKIP_ALREADY_SENT:
        await _write_greeting_log(db, parish.id, candidate.user_id, greeting_type, date_key)

    return result
