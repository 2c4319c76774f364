#!/usr/bin/env python3
"""process wide setup: Qt application names and the debug log"""

import logging
import logging.handlers
import pathlib
import time
from typing import TYPE_CHECKING

from PySide6.QtCore import QCoreApplication, QStandardPaths  # pylint: disable=no-name-in-module

if TYPE_CHECKING:
    import airplay.config

LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(process)d %(processName)s/%(threadName)s "
    "%(module)s:%(funcName)s:%(lineno)d %(message)s"
)
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"
LOG_BACKUPS = 10
ROLLOVER_ATTEMPTS = 3


def set_qt_names(
    app: QCoreApplication | None = None,
    domain: str = "com.github.airplay",
    appname: str = "airplay",
) -> QCoreApplication:
    """name the application so QSettings picks the right native store"""
    app = app or QCoreApplication.instance() or QCoreApplication()
    app.setOrganizationDomain(domain)
    app.setOrganizationName("airplay")
    app.setApplicationName(appname)
    return app


def default_logdir() -> pathlib.Path:
    """<Documents>/<application name>/logs"""
    documents = QStandardPaths.writableLocation(QStandardPaths.DocumentsLocation)
    return pathlib.Path(documents, QCoreApplication.applicationName(), "logs")


def _rollover(handler: logging.handlers.RotatingFileHandler) -> None:
    """start a fresh file, retrying a couple of times if the old one is busy"""
    for attempt in range(1, ROLLOVER_ATTEMPTS + 1):
        try:
            handler.doRollover()
            return
        except OSError as error:
            if attempt == ROLLOVER_ATTEMPTS:
                logging.warning("Could not rotate %s: %s", handler.baseFilename, error)
                return
            time.sleep(0.5 * attempt)


def setuplogging(
    logdir: pathlib.Path | str | None = None,
    logname: str = "debug.log",
    rotate: bool = False,
    level: int | str = logging.DEBUG,
    config: "airplay.config.ConfigFile | None" = None,
) -> pathlib.Path:
    """send all logging to a rotating file; returns the log directory"""
    logpath = pathlib.Path(logdir) if logdir else default_logdir()
    if logpath.is_file():
        logname = logpath.name
        logpath = logpath.parent
    logpath.mkdir(parents=True, exist_ok=True)
    logfile = logpath.joinpath(logname)

    needs_rollover = rotate and logfile.exists()
    handler = logging.handlers.RotatingFileHandler(
        filename=logfile, backupCount=LOG_BACKUPS, encoding="utf-8"
    )
    if needs_rollover:
        _rollover(handler)

    if config:
        level = config.loglevel

    logging.basicConfig(format=LOG_FORMAT, datefmt=LOG_DATEFMT, handlers=[handler], level=level)
    logging.captureWarnings(True)
    logging.info("logging to %s", logfile)
    return logpath
