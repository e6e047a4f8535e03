import logging


class SubstringFilter(logging.Filter):
    def __init__(self, substrings: list[str]):
        self.substrings = substrings

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return not any(substring in message for substring in self.substrings)


def setup_logger(logger: logging.Logger):
    # Remove existing filters to avoid duplication
    for filter in logger.filters[:]:
        if isinstance(filter, SubstringFilter):
            logger.removeFilter(filter)

    logger.addFilter(
        SubstringFilter(
            [
                # Dispatch workers can outnumber the pool, urllib3 then drops spare connections
                "Connection pool is full, discarding connection",
            ]
        )
    )


library_loggers = [logging.getLogger("urllib3.connectionpool")]
for logger in library_loggers:
    setup_logger(logger)

herald_logger = logging.getLogger("herald")
if not any(isinstance(h, logging.NullHandler) for h in herald_logger.handlers):
    herald_logger.addHandler(logging.NullHandler())
