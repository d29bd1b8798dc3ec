import time

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from ..deps import get_snapshot_service
from ..exceptions import QdrantError, http_error
from ..schemas import RecoverSnapshotRequest, SnapshotRecordOut, envelope
from ..snapshots import SnapshotService

router = APIRouter(prefix="/api/v1/collections/{collection_name}", tags=["snapshots"])


@router.get("/snapshots")
def list_snapshots(collection_name: str, service: SnapshotService = Depends(get_snapshot_service)):
    started = time.perf_counter()
    try:
        return envelope(service.list_snapshots(collection_name), started)
    except QdrantError as exc:
        raise http_error(404, "Collection not found", exc) from exc


@router.post("/snapshots")
def create_snapshot(collection_name: str, wait: bool = True, service: SnapshotService = Depends(get_snapshot_service)):
    started = time.perf_counter()
    try:
        return envelope(service.create_snapshot(collection_name, wait), started)
    except QdrantError as exc:
        raise http_error(500, "Failed to create snapshot", exc) from exc


@router.post("/snapshots/recover")
def recover_snapshot(
    collection_name: str,
    payload: RecoverSnapshotRequest,
    service: SnapshotService = Depends(get_snapshot_service),
):
    started = time.perf_counter()
    try:
        return envelope(service.recover_snapshot(collection_name, payload), started)
    except QdrantError as exc:
        raise http_error(400, "Recovery failed", exc) from exc


@router.get("/snapshots/{snapshot_name}")
def download_snapshot(collection_name: str, snapshot_name: str, service: SnapshotService = Depends(get_snapshot_service)):
    download = service.download_snapshot(collection_name, snapshot_name)
    if download is None:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    headers = {"Content-Disposition": f'attachment; filename="{snapshot_name}"'}
    if download.content_length is not None:
        headers["Content-Length"] = str(download.content_length)
    return StreamingResponse(download, media_type="application/octet-stream", headers=headers)


@router.delete("/snapshots/{snapshot_name}")
def delete_snapshot(
    collection_name: str,
    snapshot_name: str,
    wait: bool = True,
    service: SnapshotService = Depends(get_snapshot_service),
):
    started = time.perf_counter()
    if not service.delete_snapshot(collection_name, snapshot_name, wait):
        raise HTTPException(status_code=404, detail=f"Snapshot not found: {snapshot_name}")
    return envelope(True, started)


@router.get("/snapshot-history")
def snapshot_history(collection_name: str, shard_id: int | None = None, service: SnapshotService = Depends(get_snapshot_service)):
    started = time.perf_counter()
    records = service.metadata.find_by_collection(collection_name, shard_id)
    return envelope([SnapshotRecordOut.model_validate(record) for record in records], started)


@router.get("/shards/{shard_id}/snapshots")
def list_shard_snapshots(collection_name: str, shard_id: int, service: SnapshotService = Depends(get_snapshot_service)):
    started = time.perf_counter()
    try:
        return envelope(service.list_shard_snapshots(collection_name, shard_id), started)
    except QdrantError as exc:
        raise http_error(404, "Collection or shard not found", exc) from exc


@router.post("/shards/{shard_id}/snapshots")
def create_shard_snapshot(
    collection_name: str,
    shard_id: int,
    wait: bool = True,
    service: SnapshotService = Depends(get_snapshot_service),
):
    started = time.perf_counter()
    try:
        return envelope(service.create_shard_snapshot(collection_name, shard_id, wait), started)
    except QdrantError as exc:
        raise http_error(500, "Failed to create shard snapshot", exc) from exc
