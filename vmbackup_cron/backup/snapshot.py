"""
Snapshot lifecycle client.

Talks to the data store's snapshot HTTP API:
- create: GET {create_url} -> {"status": "ok", "snapshot": "<name>"}
- delete: POST {delete_url} with form field snapshot=<name> -> {"status": "ok"}

Errors are reported as {"status": "error", "msg": "..."}.
"""

import logging

import requests


logger = logging.getLogger(__name__)


class SnapshotError(Exception):
    """Raised when a snapshot cannot be created or deleted."""
    pass


class SnapshotClient:
    """
    Creates and deletes named snapshots through the snapshot HTTP API.

    A single requests.Session is reused for connection pooling; it is safe to
    share between concurrently running cycles.
    """

    def __init__(self, timeout: int = 60, session: requests.Session = None):
        """
        Initialize snapshot client.

        Args:
            timeout: Request timeout in seconds
            session: Optional requests.Session to reuse
        """
        self.timeout = timeout
        self.session = session or requests.Session()

    def create(self, create_url: str) -> str:
        """
        Create a new snapshot.

        Args:
            create_url: Snapshot create endpoint

        Returns:
            Name of the created snapshot

        Raises:
            SnapshotError: If the request fails or the API reports an error
        """
        logger.info(f"Creating snapshot via {create_url}")
        try:
            response = self.session.get(create_url, timeout=self.timeout)
        except requests.RequestException as e:
            raise SnapshotError(f"Cannot create snapshot via {create_url}: {e}")

        payload = self._decode(response, create_url)
        name = payload.get('snapshot')
        if not name:
            raise SnapshotError(f"Snapshot create response from {create_url} has no snapshot name: {payload}")

        logger.info(f"Created snapshot {name}")
        return name

    def delete(self, delete_url: str, snapshot_name: str):
        """
        Delete a snapshot.

        Args:
            delete_url: Snapshot delete endpoint
            snapshot_name: Name returned by create()

        Raises:
            SnapshotError: If the request fails or the API reports an error
        """
        logger.info(f"Deleting snapshot {snapshot_name} via {delete_url}")
        try:
            response = self.session.post(
                delete_url,
                data={'snapshot': snapshot_name},
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise SnapshotError(f"Cannot delete snapshot {snapshot_name} via {delete_url}: {e}")

        self._decode(response, delete_url)
        logger.info(f"Deleted snapshot {snapshot_name}")

    def _decode(self, response, url: str) -> dict:
        """Check status code and API status of a snapshot response."""
        if response.status_code != 200:
            raise SnapshotError(
                f"Unexpected status code returned from {url}: {response.status_code}; "
                f"expecting 200; response body: {response.text!r}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise SnapshotError(f"Cannot parse response from {url}: {e}; response body: {response.text!r}")

        if not isinstance(payload, dict):
            raise SnapshotError(f"Unexpected response from {url}: expecting a JSON object; response body: {response.text!r}")

        status = payload.get('status')
        if status == 'ok':
            return payload
        if status == 'error':
            raise SnapshotError(f"Snapshot API at {url} returned error: {payload.get('msg')}")
        raise SnapshotError(f"Unknown status {status!r} returned from {url}")
