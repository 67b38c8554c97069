from capgate.providers.base import HttpProviderAdapter, ProviderAdapter, UpstreamRequest
from capgate.providers.registry import ProviderRegistry

__all__ = ["HttpProviderAdapter", "ProviderAdapter", "ProviderRegistry", "UpstreamRequest"]
