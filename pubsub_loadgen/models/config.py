import logging
from typing import Any, List, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ConfigError, SubscriptionError
from ..utils.validation import validate_subject
from .distribution import Distribution, parse_distribution

LOG_LEVELS = {
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "": logging.DEBUG,
}

DEFAULT_STATS_INTERVAL = 60.0


class PublisherSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject: str = Field(..., min_length=1)
    interval: Distribution
    payload: Distribution


class SubscriberSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject: str = Field(..., min_length=1)


class LoadGenConfig(BaseModel):
    """
    Immutable workload description.

    Built once at startup by `load_config` and handed to the application,
    which passes it down to publishers and subscribers.
    """

    model_config = ConfigDict(frozen=True)

    broker_uri: str = Field(..., min_length=1)
    pubs: List[PublisherSpec] = Field(default_factory=list)
    subs: List[SubscriberSpec] = Field(default_factory=list)
    logfile: Optional[str] = None
    loglevel: str = "debug"
    api_url: Optional[str] = None
    stats_port: Optional[int] = Field(default=None, ge=1, le=65535)
    stats_interval: float = Field(default=DEFAULT_STATS_INTERVAL, gt=0)

    @property
    def log_level(self) -> int:
        return LOG_LEVELS[self.loglevel.lower()]


def _publisher_from_dict(index: int, pub: Any) -> PublisherSpec:
    if not isinstance(pub, Mapping):
        raise ConfigError(f"pubs[{index}] should be a Hash with subject, interval and payload")

    subject = pub.get("subject")
    if not isinstance(subject, str) or not subject:
        raise ConfigError(f"pubs[{index}] subject should be a non-empty string")

    return PublisherSpec(
        subject=subject,
        interval=parse_distribution(pub.get("interval")),
        payload=parse_distribution(pub.get("payload")),
    )


def _subscriber_from_dict(index: int, sub: Any) -> SubscriberSpec:
    subject = sub.get("subject") if isinstance(sub, Mapping) else None
    if not isinstance(subject, str) or not validate_subject(subject):
        raise SubscriptionError(
            f"Invalid subscription subs[{index}], subject should be a non-empty string"
        )
    return SubscriberSpec(subject=subject)


def load_config(raw: Any) -> LoadGenConfig:
    """
    Validate a parsed configuration document.

    Everything is checked before any network activity happens; the first
    problem found is raised as a ConfigError (or one of its subclasses).
    """
    if not isinstance(raw, Mapping):
        raise ConfigError(
            f"Invalid config format, Hash expected, {type(raw).__name__} given"
        )

    if raw.get("broker_uri") is None:
        raise ConfigError("Broker URI is missing")

    pubs = raw.get("pubs")
    if pubs is not None and not isinstance(pubs, list):
        raise ConfigError("'pubs' should be an Array")

    subs = raw.get("subs")
    if subs is not None and not isinstance(subs, list):
        raise ConfigError("'subs' should be an Array")

    loglevel = raw.get("loglevel")
    loglevel = "debug" if loglevel is None else str(loglevel)
    if loglevel.lower() not in LOG_LEVELS:
        raise ConfigError(f"Unknown log level '{loglevel}'")

    options = {
        key: raw[key]
        for key in ("logfile", "api_url", "stats_port", "stats_interval")
        if raw.get(key) is not None
    }

    try:
        return LoadGenConfig(
            broker_uri=raw["broker_uri"],
            pubs=[_publisher_from_dict(i, pub) for i, pub in enumerate(pubs or [])],
            subs=[_subscriber_from_dict(i, sub) for i, sub in enumerate(subs or [])],
            loglevel=loglevel,
            **options,
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def load_config_file(path: str) -> LoadGenConfig:
    try:
        with open(path) as fh:
            raw = yaml.safe_load(fh)
    except OSError as e:
        raise ConfigError(f"Cannot read config file '{path}': {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse config file '{path}': {e}") from e

    return load_config(raw)
