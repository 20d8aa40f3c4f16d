from __future__ import annotations

import logging
import os
import socket
from typing import NamedTuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import AddressError, ConfigurationError

# --- Load env ---
load_dotenv()

DEFAULT_HOST = os.getenv("STATICSERVE_HOST", "0.0.0.0")
DEFAULT_PORT = os.getenv("STATICSERVE_PORT", "80")

# Timeouts in seconds
SHUTDOWN_TIMEOUT = os.getenv("STATICSERVE_SHUTDOWN_TIMEOUT", "5")
WRITE_TIMEOUT = os.getenv("STATICSERVE_WRITE_TIMEOUT", "5")
IDLE_TIMEOUT = os.getenv("STATICSERVE_IDLE_TIMEOUT", "5")

LOG_LEVEL = os.getenv("STATICSERVE_LOG_LEVEL", "warning")

LOG_FORMAT = "%(asctime)s %(message)s"
LOG_DATE_FORMAT = "%Y/%m/%d %H:%M:%S"

UVICORN_LOG_LEVELS = ("critical", "error", "warning", "info", "debug", "trace")


def configure_logging(level: int = logging.INFO) -> None:
    """Send application log lines to stderr, one timestamped line each."""
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def format_address(sockaddr) -> str:
    """Render a socket address as host:port, bracketing IPv6 hosts."""
    host, port = sockaddr[0], sockaddr[1]
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class ResolvedAddress(NamedTuple):
    family: int
    sockaddr: tuple

    def __str__(self) -> str:
        return format_address(self.sockaddr)


def _check_port(value) -> str:
    value = str(value).strip()
    if not value:
        raise ValueError("port must not be empty")
    if value.isdigit() and not 0 <= int(value) <= 65535:
        raise ValueError(f"port {value} is out of range 0-65535")
    return value


class BindAddress(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = DEFAULT_HOST
    port: str = DEFAULT_PORT

    @field_validator("port", mode="before")
    @classmethod
    def validate_port(cls, v):
        return _check_port(v)

    def resolve(self) -> ResolvedAddress:
        """Look up the address the listener should bind to.

        Only the first result of getaddrinfo is used, so a host name that
        maps to several addresses binds to one of them.
        """
        try:
            infos = socket.getaddrinfo(
                self.host or None,
                self.port,
                type=socket.SOCK_STREAM,
                flags=socket.AI_PASSIVE,
            )
        except (socket.gaierror, UnicodeError, OverflowError) as e:
            raise AddressError(f"{self.host}:{self.port}: {e}") from e
        if not infos:
            raise AddressError(f"{self.host}:{self.port}: no address found")
        family, _, _, _, sockaddr = infos[0]
        return ResolvedAddress(family, sockaddr)


class ServerSettings(BaseModel):
    model_config = ConfigDict(frozen=True, validate_default=True)

    host: str = DEFAULT_HOST
    port: str = DEFAULT_PORT
    shutdown_timeout: float = Field(default=SHUTDOWN_TIMEOUT, gt=0)
    write_timeout: float = Field(default=WRITE_TIMEOUT, ge=0)  # 0 disables
    idle_timeout: float = Field(default=IDLE_TIMEOUT, gt=0)
    access_log: bool = True
    log_level: str = LOG_LEVEL

    @field_validator("port", mode="before")
    @classmethod
    def validate_port(cls, v):
        return _check_port(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        v = v.lower()
        if v not in UVICORN_LOG_LEVELS:
            raise ValueError(f"log level must be one of {', '.join(UVICORN_LOG_LEVELS)}")
        return v

    def bind_address(self) -> BindAddress:
        return BindAddress(host=self.host, port=self.port)



def load_settings(**values) -> ServerSettings:
    """Build ServerSettings, raising ConfigurationError when a value is invalid."""
    try:
        return ServerSettings(**values)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
