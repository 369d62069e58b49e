"""Order Service — ログ設定"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("order_service").setLevel(level)
    # httpx はリクエストごとに INFO を出すので抑える
    logging.getLogger("httpx").setLevel(logging.WARNING)
