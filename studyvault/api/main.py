"""
HTTP surface for the sweep engine and for host-side key access.
"""

from typing import Optional

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware

from .schemas import (
    KVSetRequest,
    KVResponse,
    KVGetResponse,
    KVListResponse,
    RepairActionModel,
    SweepRecordModel,
    SweepResponse,
    SweepHistoryResponse,
    HealthResponse,
)
from ..core.config import VERSION, debug_enabled, are_service_checks_enabled
from ..core.health import HealthChecker, RequestsHealthChecker
from ..core.store import KeyValueStore, SQLiteStore, StoreError
from ..core.sweep import SweepGuard, SweepHistory, SweepInProgressError, Sweeper, score_label
from util.logging import logger, audit_event

app = FastAPI(
    title="StudyVault Sweep API",
    version=VERSION,
    description="Data-integrity sweep over the StudyVault key-value store",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:8080"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# One guard per process: overlapping sweeps and writes made during a sweep get 409
sweep_guard = SweepGuard()

_store: Optional[KeyValueStore] = None


def get_store() -> KeyValueStore:
    global _store
    if _store is None:
        _store = SQLiteStore()
    return _store


def get_health_checker() -> Optional[HealthChecker]:
    if not are_service_checks_enabled():
        return None
    return RequestsHealthChecker()


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(store: KeyValueStore = Depends(get_store)):
    """Check store health."""
    store_health = store.health_check() if hasattr(store, "health_check") else True
    try:
        kv_count = store.count()
    except StoreError:
        store_health = False
        kv_count = 0

    return HealthResponse(
        status="healthy" if store_health else "unhealthy",
        version=VERSION,
        store_health=store_health,
        kv_count=kv_count,
        sweep_running=sweep_guard.busy
    )


@app.post("/sweep", response_model=SweepResponse)
def run_sweep_endpoint(skip_services: bool = False,
                       store: KeyValueStore = Depends(get_store),
                       checker: Optional[HealthChecker] = Depends(get_health_checker)):
    """Run a full sweep. Only one sweep may run at a time."""
    sweeper = Sweeper(store, health_checker=None if skip_services else checker)
    try:
        result = sweep_guard.run(sweeper)
    except SweepInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return SweepResponse(
        actions=[RepairActionModel(**action.to_dict()) for action in result.actions],
        record=SweepRecordModel(**result.record.to_dict()),
        score=result.score,
        score_label=score_label(result.score),
        counts=result.counts()
    )


@app.get("/sweep/history", response_model=SweepHistoryResponse)
def sweep_history_endpoint(store: KeyValueStore = Depends(get_store)):
    history = SweepHistory(store)
    return SweepHistoryResponse(
        records=[SweepRecordModel(**record.to_dict()) for record in history.load()],
        last_sweep=history.last_sweep()
    )


# Define /kv/list endpoint BEFORE /kv/{key} to avoid path parameter conflict
@app.get("/kv/list", response_model=KVListResponse)
def list_keys_endpoint(store: KeyValueStore = Depends(get_store)):
    keys = store.keys()
    return KVListResponse(keys=keys, count=len(keys))


@app.get("/kv/{key}", response_model=KVGetResponse)
def get_key_endpoint(key: str, store: KeyValueStore = Depends(get_store)):
    value = store.get(key)
    if value is None:
        raise HTTPException(status_code=404, detail="Key not found")
    return KVGetResponse(key=key, value=value)


@app.put("/kv", response_model=KVResponse)
def put_kv(req: KVSetRequest, store: KeyValueStore = Depends(get_store)):
    try:
        with sweep_guard.exclusive():
            store.set(req.key, req.value)
    except SweepInProgressError:
        raise HTTPException(status_code=409, detail="Store is being swept, retry later")
    except StoreError as e:
        logger.error(f"Failed to set key '{req.key}': {e}")
        raise HTTPException(status_code=500, detail="Failed to write key")
    return KVResponse(success=True, key=req.key)


@app.delete("/kv/{key}", response_model=KVResponse)
def delete_key_endpoint(key: str, store: KeyValueStore = Depends(get_store)):
    try:
        with sweep_guard.exclusive():
            if store.get(key) is None:
                raise HTTPException(status_code=404, detail="Key not found")
            store.delete(key)
    except SweepInProgressError:
        raise HTTPException(status_code=409, detail="Store is being swept, retry later")
    audit_event(event_type="kv.deleted", identifiers={"key": key, "source": "api"})
    return KVResponse(success=True, key=key)
