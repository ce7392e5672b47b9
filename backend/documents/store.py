from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from documents.hashing import content_hash
from documents.schemas import Document, normalized_content, validate_document
from errors import DocumentInvalid, DocumentNotFound
from models import StoredDocument

logger = logging.getLogger(__name__)


class DocumentStore(Protocol):
    def get_active(self, kind: str, doc_id: str) -> Document: ...

    def get(self, kind: str, doc_id: str, version: str) -> Document: ...

    def put(
        self,
        kind: str,
        doc_id: str,
        version: str,
        content: dict,
        *,
        active: bool = False,
    ) -> Document: ...


def resolve_document(store: DocumentStore, kind: str, doc_id: str, version: str | None) -> Document:
    if version:
        return store.get(kind, doc_id, version)
    return store.get_active(kind, doc_id)


def _prepare(kind: str, doc_id: str, version: str, content: dict) -> tuple[dict, str]:
    model = validate_document(kind, content, doc_id=doc_id, version=version)
    normalized = normalized_content(model)
    return normalized, content_hash(normalized)


def _immutable_version(kind: str, doc_id: str, version: str) -> DocumentInvalid:
    return DocumentInvalid(
        f"{kind} document {doc_id}@{version} already exists with different content.",
        kind=kind,
        doc_id=doc_id,
        version=version,
    )


class InMemoryDocumentStore:
    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], dict[str, Document]] = {}

    def get_active(self, kind: str, doc_id: str) -> Document:
        for document in self._documents.get((kind, doc_id), {}).values():
            if document.active:
                return document
        raise DocumentNotFound(kind, doc_id)

    def get(self, kind: str, doc_id: str, version: str) -> Document:
        document = self._documents.get((kind, doc_id), {}).get(version)
        if document is None:
            raise DocumentNotFound(kind, doc_id, version)
        return document

    def put(
        self,
        kind: str,
        doc_id: str,
        version: str,
        content: dict,
        *,
        active: bool = False,
    ) -> Document:
        normalized, digest = _prepare(kind, doc_id, version, content)
        versions = self._documents.setdefault((kind, doc_id), {})
        existing = versions.get(version)
        if existing is not None and existing.hash != digest:
            raise _immutable_version(kind, doc_id, version)
        if active:
            for other_version, other in list(versions.items()):
                if other.active and other_version != version:
                    versions[other_version] = replace(other, active=False)
        document = Document(
            kind=kind,
            id=doc_id,
            version=version,
            content=normalized,
            hash=digest,
            active=active or (existing.active if existing else False),
        )
        versions[version] = document
        logger.debug("Stored %s (hash %s)", document.label, digest[:12])
        return document

    def versions(self, kind: str, doc_id: str) -> list[Document]:
        return [
            self._documents[(kind, doc_id)][version]
            for version in sorted(self._documents.get((kind, doc_id), {}))
        ]


class SqlDocumentStore:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get_active(self, kind: str, doc_id: str) -> Document:
        with self._session_factory() as session:
            row = session.scalars(
                select(StoredDocument).where(
                    StoredDocument.kind == kind,
                    StoredDocument.doc_id == doc_id,
                    StoredDocument.active.is_(True),
                )
            ).first()
            if row is None:
                raise DocumentNotFound(kind, doc_id)
            return _to_document(row)

    def get(self, kind: str, doc_id: str, version: str) -> Document:
        with self._session_factory() as session:
            row = _find(session, kind, doc_id, version)
            if row is None:
                raise DocumentNotFound(kind, doc_id, version)
            return _to_document(row)

    def put(
        self,
        kind: str,
        doc_id: str,
        version: str,
        content: dict,
        *,
        active: bool = False,
    ) -> Document:
        normalized, digest = _prepare(kind, doc_id, version, content)
        with self._session_factory() as session:
            row = _find(session, kind, doc_id, version)
            if row is not None and row.content_hash != digest:
                raise _immutable_version(kind, doc_id, version)
            if active:
                session.execute(
                    update(StoredDocument)
                    .where(
                        StoredDocument.kind == kind,
                        StoredDocument.doc_id == doc_id,
                        StoredDocument.version != version,
                    )
                    .values(active=False)
                )
            if row is None:
                row = StoredDocument(
                    kind=kind,
                    doc_id=doc_id,
                    version=version,
                    content_json=normalized,
                    content_hash=digest,
                    active=active,
                )
                session.add(row)
            elif active:
                row.active = True
            session.commit()
            session.refresh(row)
            return _to_document(row)


def _find(session: Session, kind: str, doc_id: str, version: str) -> StoredDocument | None:
    return session.scalars(
        select(StoredDocument).where(
            StoredDocument.kind == kind,
            StoredDocument.doc_id == doc_id,
            StoredDocument.version == version,
        )
    ).first()


def _to_document(row: StoredDocument) -> Document:
    return Document(
        kind=row.kind,
        id=row.doc_id,
        version=row.version,
        content=row.content_json,
        hash=row.content_hash,
        active=row.active,
    )
