"""
Order Service — 注文番号の採番

形式: GG-<YYYYMMDDhhmmss (UTC)>-<5桁乱数>
呼び出し側に見せる唯一のハンドル。内部 ID とは別物。
"""

import random
import re
from datetime import datetime, timezone

ORDER_NUMBER_PREFIX = "GG"
ORDER_NUMBER_RE = re.compile(r"^GG-\d{14}-\d{5}$")

_rng = random.SystemRandom()


def make_order_number(now: datetime | None = None, rng: random.Random | None = None) -> str:
    ts = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    suffix = (rng or _rng).randrange(100_000)
    return f"{ORDER_NUMBER_PREFIX}-{ts:%Y%m%d%H%M%S}-{suffix:05d}"


def is_order_number(value: str) -> bool:
    return bool(ORDER_NUMBER_RE.match(value or ""))
