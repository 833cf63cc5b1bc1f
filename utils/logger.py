"""
Logging setup shared by the MCP server, the HTTP API and the dashboard.

stdout belongs to the MCP stdio protocol, so console output always goes
to stderr.
"""
import logging
import os
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(message)s'
DATE_FORMAT = '%H:%M:%S'


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger once.

    ``level`` defaults to ABL_LOG_LEVEL (INFO); ``log_file`` defaults to
    ABL_LOG_FILE. Calling again replaces the handlers installed earlier.
    """
    level = (level or os.environ.get("ABL_LOG_LEVEL", "INFO")).upper()
    log_file = log_file or os.environ.get("ABL_LOG_FILE")

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_abl_handler", False):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    console._abl_handler = True
    root.addHandler(console)

    if log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
        except OSError as e:
            root.warning("Could not open log file %s: %s", log_file, e)
        else:
            file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
            file_handler._abl_handler = True
            root.addHandler(file_handler)

    return root
