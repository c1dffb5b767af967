import logging
import logging.config


class JobContextFilter(logging.Filter):
    """Make sure every record carries ``job_id`` for the formatter."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "job_id"):
            record.job_id = "-"
        return True


def build_logging_config(level: str = "INFO") -> dict:
    return {
        "version": 1,
        "disable_existing_loggers": False,  # keep uvicorn/fastapi loggers
        "filters": {
            "job": {"()": "contentgen.logging_config.JobContextFilter"},
        },
        "formatters": {
            "default": {
                "format": "%(asctime)s %(levelname)s [job=%(job_id)s] %(name)s: %(message)s",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "filters": ["job"],
                "formatter": "default",
            },
        },
        "root": {"level": level, "handlers": ["console"]},
    }


def setup_logging(level: str = "INFO") -> None:
    logging.config.dictConfig(build_logging_config(level))
