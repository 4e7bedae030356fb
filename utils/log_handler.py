import os
import logging
from contextlib import contextmanager

from config import LOG_DIR

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@contextmanager
def session_logger(session_id: str, action: str):
    """Attach a file handler to the root logger for one session action.

    Every action on the same session appends to logs/{session_id}.log, so the
    file reads as the session's full history: lesson attempts, document
    escalations and chat turns.
    """
    os.makedirs(LOG_DIR, exist_ok=True)
    log_path = os.path.join(LOG_DIR, f"{session_id}.log")

    handler = logging.FileHandler(log_path, mode="a")
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    logging.getLogger(__name__).info(f"=== {action.upper()} START: session_id={session_id} ===")
    try:
        yield log_path
    finally:
        logging.getLogger(__name__).info(f"=== {action.upper()} END: session_id={session_id} ===")
        handler.flush()
        handler.close()
        root_logger.removeHandler(handler)
