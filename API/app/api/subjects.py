"""Subjects API: subject roots and their category/topic trees."""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_owner_id
from app.core.logging import DOMAIN_API, get_domain_logger
from app.models.entities import Subject
from app.schemas.tree import (
    CSVImportRequest,
    CSVImportResponse,
    SubjectCreateRequest,
    SubjectResponse,
    SubjectsCSVImportResponse,
    SubjectTree,
    SubmittedTree,
    TreeUpdateResponse,
)
from app.storage.database import get_db
from app.tree.service import build_tree_services
from app.tree.store import HierarchyStore

router = APIRouter(prefix="/subjects", tags=["subjects"])
logger = get_domain_logger(__name__, DOMAIN_API)


def _subject_response(subject: Subject) -> SubjectResponse:
    return SubjectResponse(
        id=str(subject.id),
        name=subject.name,
        description=subject.description,
        emoji=subject.emoji,
        color=subject.color,
        display_order=subject.display_order,
        tree_version=subject.tree_version,
    )


@router.post("", response_model=SubjectResponse, status_code=201)
async def create_subject(
    payload: SubjectCreateRequest,
    owner_id: UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    subject = Subject(
        user_id=owner_id,
        name=payload.name,
        description=payload.description,
        emoji=payload.emoji,
        color=payload.color,
        display_order=payload.display_order,
        tree_version=0,
    )
    db.add(subject)
    await db.commit()
    logger.info("Subject created | subject=%s", subject.id)
    return _subject_response(subject)


@router.post("/import", response_model=SubjectsCSVImportResponse)
async def import_subjects_csv(
    payload: CSVImportRequest,
    owner_id: UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    return await build_tree_services(db).importer.import_subjects_csv(owner_id, payload.csv_content, payload.mode)


@router.get("/{subject_id}", response_model=SubjectResponse)
async def get_subject(
    subject_id: UUID,
    owner_id: UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    subject = await HierarchyStore(db).get_subject(subject_id, owner_id)
    if subject is None:
        raise HTTPException(status_code=404, detail="Subject not found.")
    return _subject_response(subject)


@router.get("/{subject_id}/tree", response_model=SubjectTree)
async def get_tree(
    subject_id: UUID,
    owner_id: UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    return await build_tree_services(db).query.get_tree(subject_id, owner_id)


@router.put("/{subject_id}/tree", response_model=TreeUpdateResponse)
async def update_tree(
    subject_id: UUID,
    payload: SubmittedTree,
    owner_id: UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    outcome = await build_tree_services(db).reconciler.reconcile(subject_id, owner_id, payload)
    return TreeUpdateResponse(tree=outcome.tree, changes=outcome.changes)


@router.post("/{subject_id}/import", response_model=CSVImportResponse)
async def import_tree_csv(
    subject_id: UUID,
    payload: CSVImportRequest,
    owner_id: UUID = Depends(get_owner_id),
    db: AsyncSession = Depends(get_db),
):
    return await build_tree_services(db).importer.import_csv(
        subject_id, owner_id, payload.csv_content, payload.mode
    )
