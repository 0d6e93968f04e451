import logging

from nettrack.core.config import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging() -> None:
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    # socket.io and engine.io log every packet at INFO
    logging.getLogger("socketio").setLevel(max(level, logging.WARNING))
    logging.getLogger("engineio").setLevel(max(level, logging.WARNING))
