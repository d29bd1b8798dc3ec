import time

from fastapi import APIRouter, Depends

from ..deps import get_qdrant_client
from ..exceptions import QdrantError, http_error
from ..qdrant_client import QdrantClient
from ..schemas import envelope

router = APIRouter(prefix="/api/v1/collections", tags=["collections"])


@router.get("")
def list_collections(client: QdrantClient = Depends(get_qdrant_client)):
    started = time.perf_counter()
    try:
        return envelope(client.list_collections(), started)
    except QdrantError as exc:
        raise http_error(503, "Failed to list collections", exc) from exc


@router.get("/{name}")
def get_collection(name: str, client: QdrantClient = Depends(get_qdrant_client)):
    started = time.perf_counter()
    try:
        return envelope(client.get_collection(name), started)
    except QdrantError as exc:
        raise http_error(404, "Collection not found", exc) from exc


@router.get("/{name}/cluster")
def collection_cluster_info(name: str, client: QdrantClient = Depends(get_qdrant_client)):
    started = time.perf_counter()
    try:
        return envelope(client.collection_cluster_info(name), started)
    except QdrantError as exc:
        raise http_error(404, "Collection not found", exc) from exc
