"""Built-in services. Importing this package fills the runner's service table."""

from mqtt_service_core.services.ping import PingService

__all__ = ["PingService"]
