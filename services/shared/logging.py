"""
Shared — ロギング設定

各サービスの create_app から一度だけ呼ばれる。
モジュール側は logging.getLogger(__name__) を使うだけでよい。
"""

import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """services ロガーにコンソールハンドラを設定する（多重登録しない）。"""
    logger = logging.getLogger("services")
    logger.setLevel(level.upper())

    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    return logger
