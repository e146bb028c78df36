from tradewire.api.client import ApiClient

__all__ = ["ApiClient"]
