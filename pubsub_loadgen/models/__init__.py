from .distribution import (
    Distribution,
    NormalDistribution,
    UniformDistribution,
    parse_distribution,
)
from .config import (
    LoadGenConfig,
    PublisherSpec,
    SubscriberSpec,
    load_config,
    load_config_file,
)

__all__ = [
    "Distribution",
    "NormalDistribution",
    "UniformDistribution",
    "parse_distribution",
    "LoadGenConfig",
    "PublisherSpec",
    "SubscriberSpec",
    "load_config",
    "load_config_file",
]
