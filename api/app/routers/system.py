import time

from fastapi import APIRouter, Depends

from ..deps import get_qdrant_client
from ..qdrant_client import QdrantClient
from ..schemas import Capabilities, envelope

router = APIRouter(prefix="/api/v1/system", tags=["system"])


@router.get("/capabilities")
def capabilities(client: QdrantClient = Depends(get_qdrant_client)):
    started = time.perf_counter()
    return envelope(Capabilities(isCloud=client.cloud), started)
