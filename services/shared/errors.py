"""
Shared — エラー分類 (Error Taxonomy)

ドメインコードは以下の例外を送出し、各サービスの create_app で登録した
例外ハンドラが HTTP ステータスと JSON エンベロープに変換する。

    ValidationError     400  呼び出し側の入力不備 (フィールド名を含む)
    CatalogUnavailable  400  販売可能な商品がない
    IdempotencyConflict 409  同じ Idempotency-Key を別リクエストで再利用
    ConfigurationError  500  デプロイ設定の欠落 (呼び出し側では直せない)
    PersistenceError    500  データストア書き込み失敗 (部分注文の参照を持つ場合あり)
    ProviderError       500  外部コンバージョン API のエラー
"""


class ServiceError(Exception):
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status_code = 400

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class CatalogUnavailable(ServiceError):
    status_code = 400


class IdempotencyConflict(ServiceError):
    status_code = 409


class ConfigurationError(ServiceError):
    status_code = 500


class PersistenceError(ServiceError):
    status_code = 500

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class ProviderError(ServiceError):
    status_code = 500

    def __init__(
        self,
        message: str,
        status: int | None = None,
        response: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.status = status
        self.response = response or {}
