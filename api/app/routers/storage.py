import time

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..exceptions import StorageConfigError
from ..schemas import StorageConfigIn, StorageConfigUpdate, envelope
from ..storage_store import (
    create_storage_config,
    delete_storage_config,
    get_default_storage_config,
    get_storage_config,
    list_storage_configs,
    to_out,
    update_storage_config,
)

router = APIRouter(prefix="/api/v1/storage", tags=["storage"])


@router.get("/config")
def list_configs(db: Session = Depends(get_db)):
    started = time.perf_counter()
    return envelope([to_out(config) for config in list_storage_configs(db)], started)


@router.get("/config/default")
def default_config(db: Session = Depends(get_db)):
    started = time.perf_counter()
    config = get_default_storage_config(db)
    if not config:
        raise HTTPException(status_code=404, detail="No default storage configured")
    return envelope(to_out(config), started)


@router.post("/config")
def create_config(payload: StorageConfigIn, db: Session = Depends(get_db)):
    started = time.perf_counter()
    return envelope(to_out(create_storage_config(db, payload)), started)


@router.put("/config/{config_id}")
def update_config(config_id: str, payload: StorageConfigUpdate, db: Session = Depends(get_db)):
    started = time.perf_counter()
    try:
        config = update_storage_config(db, config_id, payload)
    except StorageConfigError as exc:
        raise HTTPException(status_code=400, detail=f"Update failed: {exc}") from exc
    if not config:
        raise HTTPException(status_code=404, detail="Configuration not found")
    return envelope(to_out(config), started)


@router.delete("/config/{config_id}")
def delete_config(config_id: str, db: Session = Depends(get_db)):
    started = time.perf_counter()
    if not get_storage_config(db, config_id):
        raise HTTPException(status_code=404, detail="Configuration not found")
    try:
        return envelope(delete_storage_config(db, config_id), started)
    except StorageConfigError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
