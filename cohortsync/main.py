"""Process wiring for Cohort-Sync.

Builds the single production implementation of each port from configuration:
the DuckDB index store, the REST fetcher and the CohortService on top of
them. Callers construct the service once and pass it around.

Architecture:
    - Follows Hexagonal Architecture principles
    - Store location and server connection come from the configuration manager
"""

import logging
from typing import Optional

from cohortsync.adapters.remote import RestFetcher
from cohortsync.adapters.storage import DuckDBIndexStore
from cohortsync.domain.ports import IndexedStorePort, RemoteFetcherPort
from cohortsync.domain.services import CohortService
from cohortsync.infrastructure.settings import settings

logger = logging.getLogger(__name__)


def create_index_store() -> IndexedStorePort:
    """Create the index store from configuration and make sure its schema exists.

    Raises:
        StoreIOError: If the database cannot be opened or initialized
    """
    store_config = settings.store_config
    logger.info(f"Initializing DuckDB index store with path: {store_config.db_path}")
    store = DuckDBIndexStore(store_config=store_config)
    store.initialize_schema().unwrap()
    return store


def create_remote_fetcher() -> RemoteFetcherPort:
    """Create the REST fetcher from configuration.

    Raises:
        ValueError: If no server URL is configured
    """
    server_config = settings.server_config
    logger.info(f"Using clinical-data server at {server_config.api_root}")
    return RestFetcher(server_config)


def create_cohort_service(offline: bool = False) -> CohortService:
    """Create the cohort service.

    Parameters:
        offline: Skip the remote fetcher; local reads and writes work, and
            every download fails with FetchError

    Raises:
        ValueError: If online and no server URL is configured
        StoreIOError: If the index store cannot be opened
    """
    fetcher: Optional[RemoteFetcherPort] = None if offline else create_remote_fetcher()
    return CohortService(create_index_store(), fetcher)


def main() -> None:
    from cohortsync.cli import app
    app()


if __name__ == "__main__":
    main()
