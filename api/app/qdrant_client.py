from datetime import datetime
from typing import Iterator, Optional

import requests

from .config import settings
from .exceptions import QdrantError
from .logging_setup import get_logger
from .schemas import (
    ClusterNode,
    ClusterStatus,
    CollectionClusterInfo,
    CollectionConfig,
    CollectionDetail,
    CollectionInfo,
    CollectionParams,
    CollectionsList,
    LocalShard,
    PeerInfo,
    RaftInfo,
    RemoteShard,
    SnapshotOut,
)

logger = get_logger("qdrant")

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


def _parse_timestamp(value: Optional[str]) -> datetime:
    if not value:
        return datetime.utcnow()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.utcnow()


def _to_snapshot(raw: dict) -> SnapshotOut:
    return SnapshotOut(
        name=raw["name"],
        creation_time=_parse_timestamp(raw.get("creation_time")),
        size=raw.get("size") or 0,
        checksum=raw.get("checksum") or None,
    )


class SnapshotDownload:
    """Open upstream snapshot stream; iterate to read, always close."""

    def __init__(self, response: requests.Response):
        self._response = response
        length = response.headers.get("Content-Length")
        self.content_length = int(length) if length else None

    def __iter__(self) -> Iterator[bytes]:
        try:
            yield from self._response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE)
        finally:
            self.close()

    def close(self) -> None:
        self._response.close()


class QdrantClient:
    """Thin wrapper over the Qdrant REST API."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        cloud: bool = False,
        connect_timeout: float = 10.0,
        read_timeout: float = 300.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or None
        self.cloud = cloud
        self.timeout = (connect_timeout, read_timeout)
        self.session = session or requests.Session()
        self.session.headers["Content-Type"] = "application/json"
        if self.api_key:
            self.session.headers["api-key"] = self.api_key

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise QdrantError(f"Qdrant request failed: {method} {path}: {exc}") from exc
        if response.status_code >= 400:
            detail = response.text
            try:
                detail = response.json().get("status", {}).get("error", detail)
            except (ValueError, AttributeError):
                pass
            response.close()
            raise QdrantError(f"Qdrant returned {response.status_code} for {method} {path}: {detail}", response.status_code)
        return response

    def _result(self, method: str, path: str, **kwargs):
        response = self._request(method, path, **kwargs)
        try:
            return response.json().get("result")
        except ValueError as exc:
            raise QdrantError(f"Invalid JSON from Qdrant for {method} {path}") from exc

    def cluster_status(self) -> ClusterStatus:
        try:
            result = self._result("GET", "/cluster") or {}
        except QdrantError as exc:
            logger.warning("Failed to get cluster status, assuming single node: %s", exc)
            return ClusterStatus(
                status="green",
                peer_id=0,
                peers={0: PeerInfo(uri=self.base_url)},
                raft_info=RaftInfo(term=0, commit=0, pending_operations=0, leader=0, role="Leader", is_voter=True),
            )

        peers = {int(peer_id): PeerInfo(uri=info.get("uri", "")) for peer_id, info in (result.get("peers") or {}).items()}
        raft = result.get("raft_info")
        if raft:
            raft_info = RaftInfo(
                term=raft.get("term", 0),
                commit=raft.get("commit", 0),
                pending_operations=raft.get("pending_operations", 0),
                leader=raft.get("leader") or 0,
                role="Leader" if raft.get("is_leader") else "Follower",
                is_voter=bool(raft.get("is_voter")),
            )
        else:
            raft_info = RaftInfo(term=0, commit=0, pending_operations=0, leader=0, role="Unknown", is_voter=False)

        if not peers:
            status = "red"
        elif raft_info.leader == 0:
            status = "yellow"
        else:
            status = "green"
        return ClusterStatus(status=status, peer_id=result.get("peer_id") or 0, peers=peers, raft_info=raft_info)

    def cluster_nodes(self) -> list[ClusterNode]:
        cluster = self.cluster_status()
        shards_count = self._local_shard_total()
        return [
            ClusterNode(
                peer_id=peer_id,
                uri=peer.uri,
                is_leader=peer_id == cluster.raft_info.leader,
                shards_count=shards_count,
            )
            for peer_id, peer in cluster.peers.items()
        ]

    def _local_shard_total(self) -> int:
        total = 0
        for collection in self.list_collections().collections:
            try:
                info = self.collection_cluster_info(collection.name)
            except QdrantError:
                continue
            total += sum(1 for shard in info.local_shards if shard.shard_id >= 0)
        return total

    def list_collections(self) -> CollectionsList:
        result = self._result("GET", "/collections") or {}
        return CollectionsList(collections=[CollectionInfo(name=c["name"]) for c in result.get("collections") or []])

    def get_collection(self, name: str) -> CollectionDetail:
        info = self._result("GET", f"/collections/{name}")
        if not info:
            raise QdrantError(f"Collection not found: {name}", 404)
        config = info.get("config") or {}
        params = config.get("params") or {}
        return CollectionDetail(
            name=name,
            status=info.get("status", "unknown"),
            vectors_count=info.get("vectors_count") or 0,
            points_count=info.get("points_count") or 0,
            segments_count=info.get("segments_count") or 0,
            config=CollectionConfig(
                params=CollectionParams(
                    shard_number=params.get("shard_number") or 1,
                    replication_factor=params.get("replication_factor") or 1,
                ),
                hnsw_config=config.get("hnsw_config") or {},
                optimizer_config=config.get("optimizer_config") or {},
                wal_config=config.get("wal_config") or {},
            ),
        )

    def collection_cluster_info(self, name: str) -> CollectionClusterInfo:
        info = self._result("GET", f"/collections/{name}/cluster")
        if not info:
            raise QdrantError(f"Collection cluster info not found: {name}", 404)
        return CollectionClusterInfo(
            peer_id=info.get("peer_id") or 0,
            shard_count=info.get("shard_count") or 0,
            local_shards=[
                LocalShard(shard_id=s["shard_id"], points_count=s.get("points_count") or 0, state=s.get("state") or "Unknown")
                for s in info.get("local_shards") or []
            ],
            remote_shards=[
                RemoteShard(shard_id=s["shard_id"], peer_id=s["peer_id"], state=s.get("state") or "Unknown")
                for s in info.get("remote_shards") or []
            ],
        )

    def list_snapshots(self, collection_name: str) -> list[SnapshotOut]:
        result = self._result("GET", f"/collections/{collection_name}/snapshots") or []
        return [_to_snapshot(raw) for raw in result]

    def create_snapshot(self, collection_name: str, wait: bool = True) -> SnapshotOut:
        result = self._result("POST", f"/collections/{collection_name}/snapshots", params={"wait": str(wait).lower()})
        if not result:
            raise QdrantError(f"Failed to create snapshot for {collection_name}")
        return _to_snapshot(result)

    def download_snapshot(self, collection_name: str, snapshot_name: str) -> Optional[SnapshotDownload]:
        try:
            response = self._request("GET", f"/collections/{collection_name}/snapshots/{snapshot_name}", stream=True)
        except QdrantError as exc:
            logger.error("Failed to download snapshot %s/%s: %s", collection_name, snapshot_name, exc)
            return None
        return SnapshotDownload(response)

    def delete_snapshot(self, collection_name: str, snapshot_name: str, wait: bool = True) -> bool:
        try:
            self._request(
                "DELETE",
                f"/collections/{collection_name}/snapshots/{snapshot_name}",
                params={"wait": str(wait).lower()},
            )
        except QdrantError as exc:
            logger.error("Failed to delete snapshot %s/%s: %s", collection_name, snapshot_name, exc)
            return False
        return True

    def _recover_body(self, location: str, priority: str, api_key: Optional[str]) -> dict:
        body = {"location": location, "priority": priority}
        effective_key = api_key or self.api_key
        if effective_key:
            body["api_key"] = effective_key
        return body

    def recover_snapshot(self, collection_name: str, location: str, priority: str = "snapshot", api_key: Optional[str] = None) -> bool:
        self._request(
            "PUT",
            f"/collections/{collection_name}/snapshots/recover",
            json=self._recover_body(location, priority, api_key),
        )
        return True

    def list_shard_snapshots(self, collection_name: str, shard_id: int) -> list[SnapshotOut]:
        result = self._result("GET", f"/collections/{collection_name}/shards/{shard_id}/snapshots") or []
        return [_to_snapshot(raw) for raw in result]

    def create_shard_snapshot(self, collection_name: str, shard_id: int, wait: bool = True) -> SnapshotOut:
        result = self._result(
            "POST",
            f"/collections/{collection_name}/shards/{shard_id}/snapshots",
            params={"wait": str(wait).lower()},
        )
        if not result:
            raise QdrantError(f"Failed to create shard snapshot for {collection_name}/{shard_id}")
        return _to_snapshot(result)

    def recover_shard_snapshot(
        self, collection_name: str, shard_id: int, location: str, priority: str = "snapshot", api_key: Optional[str] = None
    ) -> bool:
        self._request(
            "PUT",
            f"/collections/{collection_name}/shards/{shard_id}/snapshots/recover",
            json=self._recover_body(location, priority, api_key),
        )
        return True


def get_client() -> QdrantClient:
    return QdrantClient(
        base_url=settings.qdrant_base_url,
        api_key=settings.qdrant_api_key,
        cloud=settings.qdrant_cloud,
        connect_timeout=settings.qdrant_connect_timeout,
        read_timeout=settings.qdrant_read_timeout,
    )
