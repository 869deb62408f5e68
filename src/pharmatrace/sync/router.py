"""Sync status and force-resync API router."""

from fastapi import APIRouter, Depends, HTTPException

from pharmatrace.common.exceptions import (
    ChainReadError,
    EventProcessingError,
    TransactionNotFoundError,
)
from pharmatrace.common.security import require_api_key
from pharmatrace.events.schemas import DispatchResultResponse
from pharmatrace.sync.schemas import ResyncRequest, ResyncResponse, SyncStatusResponse

router = APIRouter()


def _get_cursor_store():
    from pharmatrace.deps import get_cursor_store
    return get_cursor_store()


def _get_worker():
    from pharmatrace.deps import get_sync_worker
    return get_sync_worker()


@router.get("/sync/status", response_model=SyncStatusResponse)
async def sync_status():
    from pharmatrace.deps import current_sync_worker

    cursor = await _get_cursor_store().get()
    worker = current_sync_worker()
    worker_running = worker is not None and worker.running
    if cursor is None:
        return SyncStatusResponse(initialized=False, worker_running=worker_running)
    return SyncStatusResponse(
        initialized=True,
        chain_id=cursor.chain_id,
        contract_address=cursor.contract_address,
        last_processed_block=cursor.last_processed_block,
        is_syncing=cursor.is_syncing,
        last_synced_at=cursor.last_synced_at,
        worker_running=worker_running,
    )


@router.post("/sync/transactions", response_model=ResyncResponse)
async def resync_transaction(body: ResyncRequest, _=Depends(require_api_key)):
    worker = _get_worker()
    try:
        results = await worker.resync_transaction(body.tx_hash)
    except TransactionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except EventProcessingError as e:
        raise HTTPException(status_code=422, detail=e.message)
    except ChainReadError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return ResyncResponse(
        transaction_hash=body.tx_hash,
        events=len(results),
        results=[
            DispatchResultResponse(
                event_key=r.event_key,
                event_name=r.kind.value,
                outcome=r.outcome.value,
                detail=r.detail,
            )
            for r in results
        ],
    )
