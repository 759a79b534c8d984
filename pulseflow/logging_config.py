"""Centralized logging configuration for PulseFlow."""

from typing import Any, Dict, Optional, Union
import logging
import logging.config
import os
import sys

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 3

_logging_configured = False


def _build_logging_config(
    verbose: bool = False,
    log_file: Optional[Union[str, os.PathLike]] = None,
) -> Dict[str, Any]:
    """
    Build the dictConfig configuration dictionary.

    Parameters
    ----------
    verbose : bool, optional
        Set the console handler to DEBUG instead of INFO.
    log_file : str or path or None, optional
        Also log everything (DEBUG) to this rotating file.

    Returns
    -------
    dict
        Dictionary suitable for ``logging.config.dictConfig()``.
    """
    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {"format": DEFAULT_FORMAT},
            "file": {"format": DEFAULT_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": "DEBUG" if verbose else "INFO",
                "formatter": "console",
                "stream": "ext://sys.stderr",
            },
        },
        "root": {
            "level": "DEBUG",
            "handlers": ["console"],
        },
    }

    if log_file is not None:
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "file",
            "filename": str(log_file),
            "maxBytes": DEFAULT_LOG_MAX_BYTES,
            "backupCount": DEFAULT_LOG_BACKUP_COUNT,
            "encoding": "utf-8",
        }
        config["root"]["handlers"].append("file")

    return config


def setup_logging(
    verbose: bool = False,
    log_file: Optional[Union[str, os.PathLike]] = None,
) -> None:
    """
    Configure logging for the PulseFlow command line tool.

    Only the first call has an effect. Library users who never call this
    get the standard ``logging`` defaults.

    Parameters
    ----------
    verbose : bool, optional
        Show DEBUG messages (per-frame details) on the console.
    log_file : str or path or None, optional
        Rotating log file receiving every message.
    """
    global _logging_configured

    if _logging_configured:
        return

    try:
        logging.config.dictConfig(_build_logging_config(verbose=verbose, log_file=log_file))
    except (ValueError, OSError) as e:
        sys.stderr.write(f"WARNING: Failed to configure logging: {e}\n")
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="%(levelname)s: %(message)s",
        )

    _logging_configured = True
