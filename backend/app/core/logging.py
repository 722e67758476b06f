import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# pymongo logs every heartbeat at DEBUG; keep it quieter than the app
NOISY_LOGGERS: tuple[str, ...] = ("pymongo", "paho")


def configure_logging(level: str = "INFO") -> None:
    resolved_level = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved_level, int):
        resolved_level = logging.INFO

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(resolved_level)

    logging.getLogger("app").setLevel(resolved_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved_level, logging.WARNING))
