import logging
from typing import Callable

from shared.clock import utcnow
from .client import CredentialedClient
from .templates import TemplateCatalog

logger = logging.getLogger(__name__)


class OrchestratorContext:
    """
    Everything the periodic tasks share: configuration, the template catalog
    and the credentialed client. Built once at startup, closed at shutdown.
    """

    def __init__(self, cfg, client: CredentialedClient = None,
                 catalog: TemplateCatalog = None, clock: Callable = utcnow):
        self.config = cfg
        self.client = client or CredentialedClient.from_config(cfg)
        self.catalog = catalog or TemplateCatalog()
        self.clock = clock
        self._closed = False

    def close(self):
        if self._closed:
            return
        self._closed = True
        self.client.close()
        logger.info("Orchestrator context closed")

    def __enter__(self) -> "OrchestratorContext":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
