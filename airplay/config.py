#!/usr/bin/env python3
"""
Settings store

Everything tunable lives in a QSettings store exposed as ``cparser``.
Components read their keys directly with ``cparser.value()`` and fall back
to their own module constants when no config is handed to them.
"""

import logging
import pathlib
import sys
import time

from PySide6.QtCore import QCoreApplication, QSettings  # pylint: disable=no-name-in-module

import airplay.version

LOGLEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULTS: dict[str, object] = {
    # multicast DNS browsing
    "discovery/group": "224.0.0.251",
    "discovery/port": 5353,
    "discovery/services": ["_raop._tcp.local.", "_airplay._tcp.local."],
    "discovery/bufsize": 9000,
    # RTSP/HTTP control connection
    "session/useragent": f"airplay/{airplay.version.__VERSION__}",
    "session/timeout": 10.0,
    # iTunes Remote pairing
    "remote/port": 3690,
    "remote/timeout": 10.0,
    "settings/loglevel": "DEBUG",
}


def _open_store(inifile: str | pathlib.Path | None) -> QSettings:
    """INI file at an explicit path, otherwise the per-user native store"""
    if inifile:
        return QSettings(str(inifile), QSettings.IniFormat)

    storeformat = QSettings.IniFormat if sys.platform == "win32" else QSettings.NativeFormat
    return QSettings(
        storeformat,
        QSettings.UserScope,
        QCoreApplication.organizationName(),
        QCoreApplication.applicationName(),
    )


class ConfigFile:
    """read and write the settings store"""

    def __init__(
        self,
        inifile: str | pathlib.Path | None = None,
        reset: bool = False,
        testmode: bool = False,
    ):
        self.version: str = airplay.version.__VERSION__
        self.testmode = testmode
        self.loglevel = "DEBUG"
        self.cparser: QSettings = _open_store(inifile)
        logging.info("settings: %s", self.cparser.fileName())

        if reset:
            self.reset()
            return

        self._mark_testmode()
        self.defaults()
        self.get()

    def _mark_testmode(self) -> None:
        if self.testmode:
            self.cparser.setValue("testmode/enabled", True)

    def defaults(self) -> None:
        """seed any key that has not been set yet"""
        missing = [key for key in DEFAULTS if not self.cparser.contains(key)]
        for key in missing:
            self.cparser.setValue(key, DEFAULTS[key])
        if missing:
            logging.debug("seeded defaults for %s", ", ".join(missing))

    def reset(self) -> None:
        """throw everything away and start over from the defaults"""
        logging.debug("resetting %s", self.cparser.fileName())
        self.cparser.clear()
        self._mark_testmode()
        self.defaults()
        self.save()

    def get(self) -> None:
        """reload from disk"""
        self.cparser.sync()
        loglevel = self.cparser.value("settings/loglevel", defaultValue="DEBUG")
        if isinstance(loglevel, str) and loglevel.upper() in LOGLEVELS:
            self.loglevel = loglevel.upper()

    def save(self) -> None:
        """write back to disk"""
        self.cparser.setValue("settings/loglevel", self.loglevel)
        self.cparser.setValue("settings/lastsavedate", time.strftime("%Y%m%d%H%M%S"))
        self.cparser.sync()

    def getlist(self, key: str) -> list[str]:
        """list valued key; QSettings hands back a bare string for one element lists"""
        value = self.cparser.value(key, defaultValue=DEFAULTS.get(key, []))
        if not value:
            return []
        if isinstance(value, str):
            return [value]
        return list(value)
