"""
Vouch ledger rules.

Everything that decides whether a vouch may be recorded, removed, restored or
moved lives here. Storage goes through `vouch_db`; presentation stays in the
command handlers.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

import vouch_db
from config import (
    BULK_MAX_COUNT,
    BULK_MIN_COUNT,
    DEFAULT_COMMENT,
    LEADERBOARD_LIMIT,
    MAX_COMMENT_LENGTH,
)
from vouchbot.errors import (
    EmptyMessageError,
    InvalidCountError,
    MissingProofError,
    SameUserTransferError,
    SelfVouchError,
    UsageError,
    VouchCooldownError,
)
from vouchbot.ids import new_vouch_id
from vouchbot.models import Tally, VouchRecord

logger = logging.getLogger(__name__)


@dataclass
class VouchSummary:
    subject_id: int
    count: int
    latest: Optional[VouchRecord] = None


@dataclass
class BulkGrantResult:
    requested: int
    inserted: int
    total: int
    comment: str


@dataclass
class LedgerStats:
    total: int
    top_giver: Optional[Tally] = None
    top_recipient: Optional[Tally] = None


def normalize_comment(raw: Optional[str]) -> str:
    comment = (raw or "").strip()
    if not comment:
        return DEFAULT_COMMENT
    return comment[:MAX_COMMENT_LENGTH]


def parse_count(raw: str) -> int:
    try:
        count = int(raw)
    except (TypeError, ValueError):
        raise InvalidCountError(BULK_MIN_COUNT, BULK_MAX_COUNT)
    if count < BULK_MIN_COUNT or count > BULK_MAX_COUNT:
        raise InvalidCountError(BULK_MIN_COUNT, BULK_MAX_COUNT)
    return count


class VouchLedger:
    def __init__(
        self,
        vouch_cooldown_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        self.vouch_cooldown_seconds = vouch_cooldown_seconds
        self._clock = clock

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def remaining_vouch_cooldown(self, author_id: int, subject_id: int) -> int:
        """Seconds until author may vouch for subject again, 0 when allowed."""
        latest = vouch_db.get_latest_vouch(subject_id, author_id=author_id)
        if latest is None:
            return 0
        elapsed = self._clock() - latest.created_at.timestamp()
        remaining = self.vouch_cooldown_seconds - elapsed
        if remaining <= 0:
            return 0
        return math.ceil(remaining)

    def grant(
        self,
        author_id: int,
        subject_id: int,
        comment: Optional[str],
        has_proof: bool,
        privileged: bool = False,
    ) -> VouchRecord:
        """
        Record a single vouch from author to subject.

        Raises:
            SelfVouchError: author and subject are the same user.
            MissingProofError: no image was attached.
            VouchCooldownError: a non-privileged author vouched for this
                subject within the cooldown window.
            PersistenceError: the insert failed.
        """
        if author_id == subject_id:
            raise SelfVouchError()
        if not has_proof:
            raise MissingProofError()
        if not privileged:
            remaining = self.remaining_vouch_cooldown(author_id, subject_id)
            if remaining > 0:
                raise VouchCooldownError(remaining)

        record = VouchRecord(
            id=new_vouch_id(),
            subject_id=subject_id,
            author_id=author_id,
            points=1,
            comment=normalize_comment(comment),
            created_at=self.now(),
        )
        vouch_db.insert_vouch(record)
        logger.info(f"Vouch {record.id} logged: {author_id} -> {subject_id}")
        return record

    def grant_bulk(self, author_id: int, subject_id: int, count: int, message: str) -> BulkGrantResult:
        """
        Insert `count` vouches sharing one comment and timestamp. Rows that
        fail are skipped; the result reports how many landed.
        """
        if count < BULK_MIN_COUNT or count > BULK_MAX_COUNT:
            raise InvalidCountError(BULK_MIN_COUNT, BULK_MAX_COUNT)
        message = (message or "").strip()
        if not message:
            raise EmptyMessageError(MAX_COMMENT_LENGTH)
        comment = message[:MAX_COMMENT_LENGTH]

        created_at = self.now()
        records = [
            VouchRecord(
                id=new_vouch_id(),
                subject_id=subject_id,
                author_id=author_id,
                points=1,
                comment=comment,
                created_at=created_at,
            )
            for _ in range(count)
        ]
        inserted = vouch_db.insert_vouches(records)
        if inserted < count:
            logger.warning(f"Bulk grant for {subject_id}: only {inserted}/{count} rows inserted")
        total = vouch_db.count_vouches(subject_id)
        logger.info(f"Bulk grant by {author_id}: {inserted} vouches for {subject_id} (total {total})")
        return BulkGrantResult(requested=count, inserted=inserted, total=total, comment=comment)

    def summary(self, subject_id: int) -> VouchSummary:
        count = vouch_db.count_vouches(subject_id)
        latest = vouch_db.get_latest_vouch(subject_id) if count else None
        return VouchSummary(subject_id=subject_id, count=count, latest=latest)

    def history(self, subject_id: int) -> List[VouchRecord]:
        return vouch_db.list_vouches_for_subject(subject_id)

    def remove(self, subject_id: int) -> int:
        """Soft delete every live vouch for subject. Returns the number removed."""
        removed = vouch_db.soft_delete_for_subject(subject_id)
        if removed:
            logger.info(f"Removed {removed} vouches for {subject_id}")
        return removed

    def restore(self, subject_id: int) -> int:
        restored = vouch_db.restore_for_subject(subject_id)
        if restored:
            logger.info(f"Restored {restored} vouches for {subject_id}")
        return restored

    def stats(self) -> LedgerStats:
        givers = vouch_db.top_givers(1)
        recipients = vouch_db.top_recipients(1)
        return LedgerStats(
            total=vouch_db.count_vouches(),
            top_giver=givers[0] if givers else None,
            top_recipient=recipients[0] if recipients else None,
        )

    def leaderboard(self) -> List[Tally]:
        return vouch_db.top_recipients(LEADERBOARD_LIMIT)

    def search(self, keyword: str, subject_id: Optional[int] = None) -> List[VouchRecord]:
        keyword = (keyword or "").strip()
        if not keyword:
            raise UsageError("Please provide a keyword to search for.")
        return vouch_db.search_vouches(keyword, subject_id=subject_id)

    def transfer(self, source_id: int, target_id: int) -> int:
        """
        Move every live vouch from source to target. Author, comment and
        timestamps are left as they were.
        """
        if source_id == target_id:
            raise SameUserTransferError()
        moved = vouch_db.transfer_subject(source_id, target_id)
        if moved:
            logger.info(f"Transferred {moved} vouches from {source_id} to {target_id}")
        return moved
