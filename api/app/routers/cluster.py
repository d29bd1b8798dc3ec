import time

from fastapi import APIRouter, Depends

from ..deps import get_qdrant_client
from ..exceptions import QdrantError, http_error
from ..qdrant_client import QdrantClient
from ..schemas import envelope

router = APIRouter(prefix="/api/v1/cluster", tags=["cluster"])


@router.get("")
def cluster_status(client: QdrantClient = Depends(get_qdrant_client)):
    # Falls back to a single-node status when /cluster is unreachable.
    started = time.perf_counter()
    return envelope(client.cluster_status(), started)


@router.get("/nodes")
def cluster_nodes(client: QdrantClient = Depends(get_qdrant_client)):
    started = time.perf_counter()
    try:
        return envelope(client.cluster_nodes(), started)
    except QdrantError as exc:
        raise http_error(503, "Qdrant cluster unavailable", exc) from exc
