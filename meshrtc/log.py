from collections.abc import Mapping, MutableMapping
from typing import Any
import os
import logging

def getLevel(name: str | None) -> str | int | None:
    level = None
    if name:
        level = os.environ.get(f'LOGGER_{name.upper().replace("-", "_")}_LEVEL')
    if not level:
        level = os.environ.get(f'LOGGER_MESHRTC_LEVEL', default=os.environ.get(f'LOGGER_LEVEL'))
    if level:
        if level.isdigit():
            level = int(level)
        else:
            level = level.upper()
    return level


def configRoot():
    format = os.environ.get('LOGGER_FORMAT', '%(asctime)s - %(filename)s:%(funcName)s [%(levelname)s] [%(process)d-%(thread)d] [%(name)s] %(message)s')
    level = getLevel(None)
    logging.basicConfig(format=format, level=level)
    log_file = os.environ.get('LOGGER_FILE')
    if log_file:
        fh = logging.FileHandler(log_file)
        fh.setFormatter(logging.Formatter(format))
        logging.root.addHandler(fh)

def configLogger(logger: logging.Logger) -> logging.Logger:
    level = getLevel(logger.name)
    if level is not None:
        logger.setLevel(level)
    return logger


class PeerLoggerAdapter(logging.LoggerAdapter):
    """
    Prefix every record with the remote participant it concerns.
    """

    prefix: str

    def __init__(self, logger: logging.Logger, peer_id: str | None = None, extra: Mapping[str, object] | None = None) -> None:
        super().__init__(logger, extra)
        self.prefix = f'[peer {peer_id}] ' if peer_id else ''

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        if 'extra' not in kwargs:
            kwargs["extra"] = self.extra

        return f'{self.prefix}{msg}', kwargs
