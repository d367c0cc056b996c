# server_scheduler/logging.py
import logging
import logging.handlers
import os
import platform
import sys
from datetime import datetime

DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_KEEP = 3
LOGGER_NAME = "server_scheduler"


def setup_logging(
    log_dir=DEFAULT_LOG_DIR,
    log_filename="server_scheduler.log",
    log_keep=DEFAULT_LOG_KEEP,
    file_log_level=logging.INFO,
    cli_log_level=logging.WARN,
    when="midnight",
    interval=1,
    force_reconfigure=False,
):
    """Sets up the package logger with a daily rotating file and console output.

    Args:
        log_dir (str): Directory to store log files.
        log_filename (str): The base name of the log file.
        log_keep (int): Number of backup log files to keep.
        file_log_level (int): The minimum level written to the log file.
        cli_log_level (int): The minimum level echoed to the console.
        when (str): Indicates when to rotate. See TimedRotatingFileHandler docs.
        interval (int): The rotation interval.
        force_reconfigure (bool): Drop existing handlers and install new ones.

    Returns:
        logging.Logger: The configured package logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(min(file_log_level, cli_log_level))

    if force_reconfigure:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    if not logger.handlers:
        formatter = logging.Formatter(
            "%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s"
        )
        try:
            os.makedirs(log_dir, exist_ok=True)
            log_path = os.path.join(log_dir, log_filename)
            file_handler = logging.handlers.TimedRotatingFileHandler(
                log_path,
                when=when,
                interval=interval,
                backupCount=log_keep,
                encoding="utf-8",
            )
            file_handler.setLevel(file_log_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Failed to create log file handler: {e}", file=sys.stderr)

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(
            logging.Formatter("%(levelname)s: %(message)s")
        )
        console_handler.setLevel(cli_log_level)
        logger.addHandler(console_handler)

        logger.debug(
            f"Logging setup complete. Dir: {log_dir}, Filename: {log_filename}, "
            f"File level: {file_log_level}, CLI level: {cli_log_level}"
        )

    return logger


def log_separator(logger, app_name=None, app_version="0.0.0"):
    """Writes a separator block to the file handlers only.

    The block names the application, OS, Python version and time, which makes
    restarts easy to spot in a long-lived log file.

    Args:
        logger: The logger object.
        app_name: The name of the application.
        app_version: The version of the application.
    """
    os_info = f"{platform.system()} {platform.release()}"
    current_time = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

    separator_line = "=" * 100
    info_lines = [
        f"{app_name} v{app_version}",
        f"Operating System: {os_info}",
        f"Python Version: {platform.python_version()}",
        f"Timestamp: {current_time}",
    ]

    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler):
            if getattr(handler, "stream", None) is None:
                continue
            try:
                handler.stream.write("\n" + separator_line + "\n")
                for line in info_lines:
                    handler.stream.write(line + "\n")
                handler.stream.write(separator_line + "\n\n")
                handler.stream.flush()
            except ValueError as e:
                if "I/O operation on closed file" in str(e):
                    print(
                        f"Warning: Could not write to log file (stream closed): {e}",
                        file=sys.stderr,
                    )
                else:
                    raise
