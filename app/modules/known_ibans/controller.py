from fastapi import APIRouter, Depends
from typing import List

from app.core.auth import require_operator
from app.core.dependencies import DatabaseDep, KnownIBANServiceDep
from app.modules.known_ibans.dto import (
    BlacklistIBANModel,
    CreateTrustedIBANModel,
    KnownIBANResponse,
    LinkTrustedIBANModel,
    TrustedIBANResponse,
)

router = APIRouter(
    prefix="/known-ibans",
    tags=["known-ibans"],
    dependencies=[Depends(require_operator)],
)


@router.get("/blacklist", response_model=List[KnownIBANResponse])
async def list_blacklist(db: DatabaseDep, known_ibans: KnownIBANServiceDep):
    return await known_ibans.list_blacklisted(db)


@router.post("/blacklist", response_model=KnownIBANResponse, status_code=201)
async def add_to_blacklist(
    data: BlacklistIBANModel,
    db: DatabaseDep,
    known_ibans: KnownIBANServiceDep,
):
    """Transactions from this account are dropped before they are stored"""
    return await known_ibans.blacklist(db, data.iban, payer_name=data.payer_name, reason=data.reason)


@router.delete("/blacklist/{iban}", status_code=204)
async def remove_from_blacklist(iban: str, db: DatabaseDep, known_ibans: KnownIBANServiceDep) -> None:
    await known_ibans.remove_blacklisted(db, iban)


@router.get("/trusted", response_model=List[TrustedIBANResponse])
async def list_trusted(db: DatabaseDep, known_ibans: KnownIBANServiceDep):
    return await known_ibans.list_trusted(db)


@router.get("/trusted/children/{child_id}", response_model=List[TrustedIBANResponse])
async def list_trusted_for_child(child_id: int, db: DatabaseDep, known_ibans: KnownIBANServiceDep):
    return await known_ibans.list_trusted(db, child_id=child_id)


@router.post("/trusted", response_model=KnownIBANResponse, status_code=201)
async def create_trusted(
    data: CreateTrustedIBANModel,
    db: DatabaseDep,
    known_ibans: KnownIBANServiceDep,
):
    return await known_ibans.link_trusted(db, data.iban, data.child_id, payer_name=data.payer_name)


@router.post("/trusted/{iban}/link", response_model=KnownIBANResponse)
async def link_trusted(
    iban: str,
    data: LinkTrustedIBANModel,
    db: DatabaseDep,
    known_ibans: KnownIBANServiceDep,
):
    return await known_ibans.link_trusted(db, iban, data.child_id, payer_name=data.payer_name)


@router.post("/trusted/{iban}/unlink", status_code=204)
async def unlink_trusted(iban: str, db: DatabaseDep, known_ibans: KnownIBANServiceDep) -> None:
    """Existing warnings keep their child"""
    await known_ibans.unlink_trusted(db, iban)
