from capgate.gateway.facade import Gateway

__all__ = ["Gateway"]
