"""Transport clients for external API interactions."""
from parcel_locator.clients.http_client import HttpClient, MalformedPayloadError
from parcel_locator.clients.openai_client import OpenAIClient

__all__ = ["HttpClient", "MalformedPayloadError", "OpenAIClient"]
