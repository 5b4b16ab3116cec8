"""Document and admin endpoints.

Each document route is a policy enforcement point: access is decided by
the embedded authorization service, never by the route itself.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from pydantic import BaseModel, Field, ValidationError

from packages.api.security import (
    AuthenticatedUser,
    admin_object,
    document_object,
    get_current_user,
    get_fga,
    require_relation,
    validate_document_id,
    validate_user_id,
)
from packages.fga import (
    EmbeddedFGA,
    EmbeddedFGAError,
    EngineRequestError,
    Fact,
    WriteConflictError,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Documents"])

DOCUMENTS: dict[str, str] = {
    "1": "Document 1",
    "2": "Document 2",
}


# =============================================================================
# Request/Response Models
# =============================================================================


class LoginRequest(BaseModel):
    """Development login."""

    user_id: str = Field(..., min_length=1, max_length=128, description="User id, e.g. an email")


class LoginResponse(BaseModel):
    user_id: str


class DocumentSummary(BaseModel):
    id: str
    name: str


class DocumentAccess(BaseModel):
    """Result of an allowed document access."""

    id: str
    name: str
    user_id: str
    action: str


class AdminPanel(BaseModel):
    user_id: str
    documents: list[DocumentSummary]


class TupleRequest(BaseModel):
    """Grant a user a relation on a document."""

    document: str = Field(..., min_length=1, max_length=64, description="Document id")
    relation: str = Field(..., min_length=1, max_length=64, description="Relation, e.g. viewer")
    user: str = Field(..., min_length=1, max_length=128, description="User id")


class TupleResponse(BaseModel):
    object: str
    relation: str
    user: str


# =============================================================================
# Session
# =============================================================================


@router.post("/login", response_model=LoginResponse, tags=["Session"])
async def login(body: LoginRequest, request: Request, response: Response) -> LoginResponse:
    """Log in as ``user_id`` (development only: no credentials are checked)."""
    user_id = validate_user_id(body.user_id)
    settings = request.app.state.settings
    response.set_cookie(
        settings.session_cookie,
        user_id,
        max_age=settings.session_max_age,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
    )
    logger.info("User logged in: %s", user_id)
    return LoginResponse(user_id=user_id)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT, tags=["Session"])
async def logout(request: Request, response: Response) -> None:
    response.delete_cookie(request.app.state.settings.session_cookie)


# =============================================================================
# Documents
# =============================================================================


def _document(document_id: str) -> DocumentSummary:
    name = DOCUMENTS.get(validate_document_id(document_id))
    if name is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return DocumentSummary(id=document_id, name=name)


@router.get("/documents", response_model=list[DocumentSummary])
async def list_documents(
    user: AuthenticatedUser = Depends(get_current_user),
) -> list[DocumentSummary]:
    """List documents. Any logged-in user may see the list."""
    return [DocumentSummary(id=doc_id, name=name) for doc_id, name in DOCUMENTS.items()]


@router.get("/documents/{document_id}/view", response_model=DocumentAccess)
def view_document(
    document_id: str,
    user: AuthenticatedUser = Depends(require_relation("viewer", document_object)),
) -> DocumentAccess:
    """View a document. Requires the viewer relation."""
    document = _document(document_id)
    return DocumentAccess(id=document.id, name=document.name, user_id=user.user_id, action="viewing")


@router.get("/documents/{document_id}/edit", response_model=DocumentAccess)
def edit_document(
    document_id: str,
    user: AuthenticatedUser = Depends(require_relation("editor", document_object)),
) -> DocumentAccess:
    """Edit a document. Requires the editor relation."""
    document = _document(document_id)
    return DocumentAccess(id=document.id, name=document.name, user_id=user.user_id, action="editing")


# =============================================================================
# Admin
# =============================================================================


@router.get("/admin", response_model=AdminPanel, tags=["Admin"])
def admin_panel(
    user: AuthenticatedUser = Depends(require_relation("admin", admin_object)),
) -> AdminPanel:
    """Admin panel. Requires admin on the application object."""
    return AdminPanel(
        user_id=user.user_id,
        documents=[DocumentSummary(id=doc_id, name=name) for doc_id, name in DOCUMENTS.items()],
    )


@router.post(
    "/admin/tuples",
    response_model=TupleResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Admin"],
)
def add_tuple(
    body: TupleRequest,
    user: AuthenticatedUser = Depends(require_relation("admin", admin_object)),
    fga: EmbeddedFGA = Depends(get_fga),
) -> TupleResponse:
    """Grant ``user`` the ``relation`` on a document."""
    document_id = validate_document_id(body.document)
    user_id = validate_user_id(body.user)
    try:
        fact = Fact(object=f"document:{document_id}", relation=body.relation, user=f"user:{user_id}")
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid relation") from e

    try:
        fga.write([fact])
    except WriteConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Tuple already exists") from e
    except EngineRequestError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
    except EmbeddedFGAError as e:
        logger.error("Failed to add tuple %s: %s", fact, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Failed to add tuple"
        ) from e

    logger.info("Tuple added by %s: %s", user.subject, fact)
    return TupleResponse(object=fact.object, relation=fact.relation, user=fact.user)
