# MIT License
#
# Copyright (c) 2025 CPen Link Contributors
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in
# all copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""
Configuration for the CPen link and the storage endpoint.

Settings come from a plain dictionary (or any mapping with ``get``) so the
same object can be built from a config file section, a test fixture or
keyword defaults. The storage endpoint may be overridden from the
environment with CAMFC_BASE and CAMFC_PORT; both must be present for the
override to apply.
"""

import os

import RNS


def _as_bool(value):
    # Accept "yes"/"no" style strings from config files
    if isinstance(value, str):
        return value.lower() in ["yes", "true", "1"]
    return bool(value)


class CPenConfig:
    """
    Runtime settings for a CPenApp.

    Args:
        configuration: Mapping with optional overrides for any setting
        environ: Environment mapping used for endpoint overrides
                 (defaults to os.environ)
    """

    DEFAULT_BASE_URL = "http://localhost"
    DEFAULT_PORT = 8005

    # Fixed pen addressing
    SERVICE_UUID = "d816e4c6-1b99-4da7-bcd5-7c37cc2642c4"
    CHARACTERISTIC_UUID = "d816e4c7-1b99-4da7-bcd5-7c37cc2642c4"
    DEVICE_NAME_PREFIX = "cpen"

    # Discovery and connection settings
    SCAN_DURATION = 5.0
    RESOLVE_DURATION = 2.0
    CONNECT_TIMEOUT = 10.0
    SETTLE_DELAY = 0.5

    # Credential cache
    TOTP_WINDOW = 30.0
    TOTP_REFRESH_LEAD = 5.0
    MAX_COMMAND_RETRIES = 2

    # Transfer settings
    CHUNK_SIZE = 4 * 1024 * 1024
    MAX_CHUNK_ATTEMPTS = 3
    CHUNK_RETRY_DELAY = 1.0
    HTTP_TIMEOUT = 30.0
    DOWNLOAD_DIR = os.path.join("data", "downloads")

    def __init__(self, configuration=None, environ=None):
        c = configuration if configuration is not None else {}
        env = environ if environ is not None else os.environ

        self.base_url = str(c.get("base_url", CPenConfig.DEFAULT_BASE_URL)).rstrip("/")
        self.port = int(c.get("port", CPenConfig.DEFAULT_PORT))

        env_base = env.get("CAMFC_BASE")
        env_port = env.get("CAMFC_PORT")
        if env_base and env_port:
            try:
                self.port = int(env_port)
                self.base_url = env_base.rstrip("/")
            except ValueError:
                RNS.log(f"{self} ignoring invalid CAMFC_PORT '{env_port}'", RNS.LOG_WARNING)

        self.service_uuid = c.get("service_uuid", CPenConfig.SERVICE_UUID)
        self.characteristic_uuid = c.get("characteristic_uuid", CPenConfig.CHARACTERISTIC_UUID)
        self.device_name_prefix = str(c.get("device_name_prefix", CPenConfig.DEVICE_NAME_PREFIX))

        self.scan_duration = float(c.get("scan_duration", CPenConfig.SCAN_DURATION))
        self.resolve_duration = float(c.get("resolve_duration", CPenConfig.RESOLVE_DURATION))
        self.connect_timeout = float(c.get("connect_timeout", CPenConfig.CONNECT_TIMEOUT))
        self.settle_delay = float(c.get("settle_delay", CPenConfig.SETTLE_DELAY))

        self.totp_window = float(c.get("totp_window", CPenConfig.TOTP_WINDOW))
        self.totp_refresh_lead = float(c.get("totp_refresh_lead", CPenConfig.TOTP_REFRESH_LEAD))
        if self.totp_refresh_lead >= self.totp_window:
            RNS.log(f"{self} refresh lead {self.totp_refresh_lead}s not below window, using default", RNS.LOG_WARNING)
            self.totp_window = CPenConfig.TOTP_WINDOW
            self.totp_refresh_lead = CPenConfig.TOTP_REFRESH_LEAD
        self.max_command_retries = int(c.get("max_command_retries", CPenConfig.MAX_COMMAND_RETRIES))

        self.chunk_size = int(c.get("chunk_size", CPenConfig.CHUNK_SIZE))
        self.max_chunk_attempts = int(c.get("max_chunk_attempts", CPenConfig.MAX_CHUNK_ATTEMPTS))
        self.chunk_retry_delay = float(c.get("chunk_retry_delay", CPenConfig.CHUNK_RETRY_DELAY))
        self.http_timeout = float(c.get("http_timeout", CPenConfig.HTTP_TIMEOUT))
        self.download_dir = c.get("download_dir", CPenConfig.DOWNLOAD_DIR)

        self.enable_bluez_radio = _as_bool(c.get("enable_bluez_radio", True))

        self.loglevel = c.get("loglevel", None)
        self.logfile = c.get("logfile", None)

    @property
    def endpoint(self):
        """Storage endpoint root, e.g. ``http://localhost:8005``."""
        return f"{self.base_url}:{self.port}"

    def __str__(self):
        return "CPenConfig"


def configure_logging(config):
    """
    Point Reticulum's logger at the configured level and destination.

    Args:
        config: CPenConfig with optional ``loglevel`` and ``logfile``
    """
    if config.loglevel is not None:
        RNS.loglevel = int(config.loglevel)
    if config.logfile:
        RNS.logfile = config.logfile
        RNS.logdest = RNS.LOG_FILE
    RNS.log(f"{config} storage endpoint {config.endpoint}", RNS.LOG_DEBUG)
