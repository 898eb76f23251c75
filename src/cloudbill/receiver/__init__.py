from .endpoint import WebhookEndpointServer
from .server import ProviderWebhookServer

__all__ = ["WebhookEndpointServer", "ProviderWebhookServer"]
