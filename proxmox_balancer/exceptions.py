# exceptions.py

"""Custom exceptions for Proxmox VM Balancer."""

class ProxmoxError(Exception):
    """Base exception for Proxmox-related errors."""
    pass

class ResourceError(ProxmoxError):
    """Exception for failed or malformed remote calls."""
    pass

class AuthenticationError(ResourceError):
    """Exception for rejected credentials or tokens."""
    pass

class CollectionError(ProxmoxError):
    """Exception raised when a cluster snapshot cannot be built at all."""
    pass

class ConfigurationError(ProxmoxError):
    """Exception for configuration-related errors."""
    pass

class ValidationError(ConfigurationError):
    """Exception for invalid planning input."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")

class CacheError(ProxmoxError):
    """Exception for disk cache storage failures."""
    pass
