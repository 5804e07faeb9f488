"""Concurrent retrieval of every resource in a folder."""
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Iterable, List, Optional, Sequence, Tuple

from ..domains.deadline import Deadline
from ..domains.errors import OperationTimeoutError
from ..domains.models import FolderResource, ResourceResult, SecretRecord, SecretSet
from ..domains.vault_client import VaultClient

logger = logging.getLogger(__name__)


class ConcurrentRetriever:
    """
    Fetch resource values in parallel, one task per resource.

    Each resource costs a round trip to the vault, so every fetch is started
    at once with no concurrency cap. A failed fetch is logged and left out of
    the result; it never fails the batch.
    """

    def __init__(self, vault: VaultClient):
        self.vault = vault

    def _fetch_one(self, resource: FolderResource) -> ResourceResult:
        try:
            name, value = self.vault.fetch_resource_value(resource.id)
            return ResourceResult(resource=resource, record=SecretRecord(key=name, value=value))
        except Exception as e:
            return ResourceResult(resource=resource, error=e)

    def fetch_results(
        self, resources: Sequence[FolderResource], deadline: Optional[Deadline] = None
    ) -> List[ResourceResult]:
        """
        Fetch every resource and return one result per resource.

        Args:
            resources: Resources to fetch
            deadline: Overall budget; unbounded when None

        Returns:
            Results in completion order, failures included

        Raises:
            OperationTimeoutError: If the deadline expires before every fetch
                finishes, or a fetch ran out of time. Pending fetches are
                abandoned.
        """
        if not resources:
            return []

        deadline = deadline or Deadline(None)
        timeout = deadline.remaining()

        executor = ThreadPoolExecutor(max_workers=len(resources), thread_name_prefix="vaultsync-fetch")
        try:
            futures = [executor.submit(self._fetch_one, resource) for resource in resources]
            done, pending = wait(futures, timeout=timeout)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if pending:
            logger.error(f"{len(pending)} of {len(resources)} fetch(es) still running at deadline")
            raise deadline.timeout_error()

        results = [future.result() for future in done]
        if any(isinstance(result.error, OperationTimeoutError) for result in results):
            raise deadline.timeout_error()
        return results

    def fetch_all(
        self, resources: Sequence[FolderResource], deadline: Optional[Deadline] = None
    ) -> SecretSet:
        """
        Fetch every resource and collect the successful ones.

        Returns:
            SecretSet of fetched secrets, with no defined order
        """
        secrets, _ = collect(self.fetch_results(resources, deadline))
        return secrets


def collect(results: Iterable[ResourceResult]) -> Tuple[SecretSet, List[ResourceResult]]:
    """
    Split fetch results into the fetched secrets and the failures.

    Failures are logged, never raised.
    """
    secrets: SecretSet = {}
    failures = []
    for result in results:
        if not result.ok:
            failures.append(result)
            logger.warning(
                f"Failed to download resource {result.resource.id} ({result.resource.name}): {result.error}"
            )
            continue
        secrets[result.record.key] = result.record

    if failures:
        logger.warning(f"Retrieved {len(secrets)} secret(s), {len(failures)} failed")
    else:
        logger.info(f"Retrieved {len(secrets)} secret(s)")
    return secrets, failures
