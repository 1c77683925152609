"""API endpoints for identifier counters and scan parsing."""
from typing import List

from fastapi import APIRouter

from refurbline.api.deps import DB, CurrentActor
from refurbline.models.identifier_counter import CounterNamespace
from refurbline.schemas.identifier import (
    CounterResponse, CounterInitialize, CounterSyncResponse,
    QlidPreview, ScanParseRequest, ScanParseResponse,
)
from refurbline.services import qlid as qlid_codec
from refurbline.services.identifier_service import IdentifierService


router = APIRouter()


@router.get("/counters", response_model=List[CounterResponse])
async def list_counters(db: DB):
    return await IdentifierService(db).list_counters()


@router.post("/counters/initialize", response_model=CounterResponse)
async def initialize_counter(data: CounterInitialize, db: DB, actor: CurrentActor):
    """Seed a counter. Counters never move backwards."""
    counter = await IdentifierService(db, actor=actor.id).initialize_counter(
        data.namespace, data.starting_value,
    )
    await db.commit()
    return counter


@router.post("/qlid/sync", response_model=CounterSyncResponse)
async def sync_qlid_counter(db: DB, actor: CurrentActor):
    """Move the QLID counter past every issued tick if it fell behind."""
    result = await IdentifierService(db, actor=actor.id).verify_and_repair_qlid_counter()
    await db.commit()
    return result


@router.get("/qlid/preview", response_model=QlidPreview)
async def preview_next_qlid(db: DB):
    service = IdentifierService(db)
    return QlidPreview(
        next_qlid=await service.preview_next_qlid(),
        current_tick=await service.current_tick(CounterNamespace.QLID),
    )


@router.post("/scan/parse", response_model=ScanParseResponse)
async def parse_scan(data: ScanParseRequest):
    """Parse a bare QLID or container scan payload without touching the store."""
    scan = qlid_codec.parse_scan(data.payload)
    return ScanParseResponse(qlid=scan.qlid, tick=scan.tick, series=scan.series, container_id=scan.container_id)
