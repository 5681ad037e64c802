"""
Conversion Service — 個人情報のハッシュ化

メール・電話番号・外部 ID は小文字化と前後空白の除去のあと SHA-256 で
ハッシュ化してから送信する。空・未指定の値はハッシュせず項目ごと省く。
"""

import hashlib


def hash_identity(value) -> str | None:
    if value is None:
        return None
    normalized = str(value).strip().lower()
    if not normalized:
        return None
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()
