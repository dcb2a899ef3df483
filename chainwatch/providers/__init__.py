"""HTTP collaborators for the bridging and status APIs."""

from .bridge_api import BridgeServiceClient
from .tx_status import TransactionStatusClient

__all__ = ["BridgeServiceClient", "TransactionStatusClient"]
