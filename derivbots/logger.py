import logging

LOG_FMT = "%(asctime)s │ %(levelname)-7s │ %(name)s │ %(message)s"


def setup_logger(name: str = "derivbots", level="INFO") -> logging.Logger:
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FMT, datefmt="%H:%M:%S")
    logger = logging.getLogger(name)
    logger.setLevel(level)
    return logger
