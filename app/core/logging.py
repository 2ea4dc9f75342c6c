import logging

LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # SQL echo stays off unless explicitly raised for debugging.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
