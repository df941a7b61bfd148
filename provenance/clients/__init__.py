"""Registry clients."""

from .base_client import BaseClient, request_signature
from .civitai_client import CivitaiClient
from .hf_client import HFClient

__all__ = ["BaseClient", "CivitaiClient", "HFClient", "request_signature"]
