import logging
import sys

from tqdm.auto import tqdm

COLORS = {
    "bold_yellow": "\x1b[33;1m",
    "green": "\x1b[38;5;10m",
    "reset": "\x1b[0m",
}


class TqdmHandler(logging.StreamHandler):
    """
    Writes records through `tqdm.write`, so log lines emitted while a grid is
    running are printed above the progress bar instead of breaking it.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            tqdm.write(self.format(record), file=self.stream)
            self.flush()
        except RecursionError:
            raise
        except Exception:
            self.handleError(record)


def log(logger_method, text: str, color: str) -> None:
    """
    Log a text wrapped in color codes, e.g. `log(logger.info, "done", "green")`.
    """
    logger_method(COLORS[color] + text + COLORS["reset"])


def get_logger(module_name: str) -> logging.Logger:
    """
    Returns the logger used across bfpower modules.

    The handler is attached only once per logger, so modules that are
    re-imported by joblib workers do not print every line twice.
    """
    logger = logging.getLogger(module_name)
    logger.setLevel(logging.INFO)

    if not logger.handlers:
        handler = TqdmHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] - %(levelname)s - %(name)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(handler)

    return logger
