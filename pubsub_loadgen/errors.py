class LoadGenError(Exception):
    """Base class for all load generator errors."""


class ConfigError(LoadGenError):
    pass


class DistributionError(ConfigError):
    pass


class InvalidDistributionKind(DistributionError):
    pass


class InvalidNormalParams(DistributionError):
    pass


class InvalidRandomParams(DistributionError):
    pass


class SubscriptionError(ConfigError):
    pass


class BrokerError(LoadGenError):
    pass


class BrokerConnectError(BrokerError):
    pass


class TransientPublishError(BrokerError):
    def __init__(self, subject, reason, code=None):
        self.subject = subject
        self.reason = reason
        self.code = code
        super().__init__(f"Publish to '{subject}' failed: {reason}")
