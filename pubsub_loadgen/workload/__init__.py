from .publisher import PublisherTask
from .subscriber import SubscriberTask

__all__ = ["PublisherTask", "SubscriberTask"]
