from datetime import datetime

from app.stockflow.core.config import settings
from app.stockflow.repos.transfers import TransferRepository


def transfer_number_prefix(now: datetime) -> str:
    return f"{settings.TRANSFER_NUMBER_PREFIX}-{now:%Y%m%d}-"


def next_transfer_number(repo: TransferRepository, now: datetime | None = None) -> str:
    """Next ``TRF-YYYYMMDD-NNN`` number after the highest one issued today.

    Uniqueness is enforced by the database; callers retry on a collision.
    """
    prefix = transfer_number_prefix(now or datetime.utcnow())
    highest = 0
    for number in repo.list_numbers_with_prefix(prefix):
        suffix = number[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:03d}"
