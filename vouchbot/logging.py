import logging


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=level,
    )
    # python-telegram-bot logs every request URL through httpx, token included
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logging.getLogger("vouchbot")
