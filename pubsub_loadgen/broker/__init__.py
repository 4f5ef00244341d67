from .client import BrokerClient, MessageHandler, WebSocketBrokerClient

__all__ = ["BrokerClient", "MessageHandler", "WebSocketBrokerClient"]
