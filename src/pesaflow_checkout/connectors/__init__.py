"""Payment gateway connectors."""

from pesaflow_checkout.connectors.base import GatewayConnector
from pesaflow_checkout.connectors.pesapal import PesapalConnector

__all__ = ["GatewayConnector", "PesapalConnector"]
