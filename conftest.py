#!/usr/bin/env python3
"""pytest fixtures"""

import contextlib
import pathlib
import tempfile

import pytest

import airplay.bootstrap
import airplay.config

try:
    from pytest_cov.embed import cleanup_on_sigterm
except ImportError:
    pass
else:
    cleanup_on_sigterm()

# DO NOT CHANGE THIS TO BE com.github.airplay
# otherwise your actual settings will disappear!
DOMAIN = "com.github.airplay.testsuite"


@pytest.fixture
def getroot(pytestconfig):
    """get the base of the source tree"""
    return pytestconfig.rootpath


@pytest.fixture
def bootstrap():
    """bootstrap a configuration"""
    with contextlib.suppress(PermissionError):  # Windows blows
        with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as newpath:
            airplay.bootstrap.set_qt_names(domain=DOMAIN, appname="testsuite")
            config = airplay.config.ConfigFile(
                inifile=pathlib.Path(newpath).joinpath("testsuite.ini"), testmode=True
            )
            config.cparser.sync()
            config.testdir = pathlib.Path(newpath)
            yield config
