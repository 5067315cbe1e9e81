"""Plaid Link and institution management API endpoints.

Provides the server-side endpoints for the Plaid Link browser-based
authentication flow (link tokens, public token exchange) and the
institution-level operations that follow it: reconciliation after a
re-link, duplicate detection and merge, balance refresh, disconnect,
and the call ledger usage report.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.helpers import get_current_user_id
from config import settings
from database import get_db
from integrations.exceptions import ProviderAuthError, ProviderError
from integrations.plaid_client import PlaidClient
from integrations.provider_protocol import CallContext
from models import InstitutionConnection
from schemas import (
    ConnectionResponse,
    DisconnectResponse,
    DuplicateGroupResponse,
    ExchangeTokenRequest,
    LinkResponse,
    LinkTokenResponse,
    MergeRequest,
    MergeResponse,
    ReconcileResponse,
    RefreshResponse,
    UsageEntry,
)
from services.call_ledger import CallLedger
from services.connection_service import ConnectionService
from services.duplicate_service import DuplicateService
from services.exceptions import ConnectionNotFoundError, InstitutionBusyError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/plaid", tags=["plaid"])


def _get_plaid_client() -> PlaidClient:
    """Dependency for injecting the Plaid client (overridable in tests)."""
    return PlaidClient(ledger=CallLedger())


def get_connection_service(
    client: PlaidClient = Depends(_get_plaid_client),
) -> ConnectionService:
    return ConnectionService(client)


def _require_configured(client: PlaidClient) -> None:
    if not client.is_configured():
        raise HTTPException(status_code=400, detail="Plaid is not configured")


def _busy(e: InstitutionBusyError) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail=f"Institution {e.institution_id} is busy with another merge or reconciliation",
    )


def _lock_timeout() -> float:
    return float(settings.INSTITUTION_LOCK_TIMEOUT_SECONDS)


# ------------------------------------------------------------------
# Link flow
# ------------------------------------------------------------------


@router.post("/link-token", response_model=LinkTokenResponse)
def create_link_token(
    user_id: str = Depends(get_current_user_id),
    client: PlaidClient = Depends(_get_plaid_client),
    service: ConnectionService = Depends(get_connection_service),
):
    """Create a Plaid Link token for the frontend."""
    _require_configured(client)

    try:
        return LinkTokenResponse(link_token=service.create_link_token(user_id))
    except ProviderError as e:
        # Surface actionable hint for the most common error
        if e.error_code == "INVALID_API_KEYS":
            hint = (
                "Plaid rejected the credentials. Check that PLAID_ENVIRONMENT "
                "matches your keys (sandbox or production). "
                "Each environment has different secrets."
            )
            logger.error("Plaid INVALID_API_KEYS: %s", hint)
            raise HTTPException(status_code=400, detail=hint)
        logger.error("Failed to create Plaid link token: %s", e)
        raise HTTPException(status_code=502, detail="Failed to create link token")


@router.post("/exchange-token", response_model=LinkResponse)
def exchange_token(
    body: ExchangeTokenRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    client: PlaidClient = Depends(_get_plaid_client),
    service: ConnectionService = Depends(get_connection_service),
):
    """Exchange a Plaid Link public_token and bring the institution's accounts in.

    A re-link of an institution that already has local accounts runs
    reconciliation instead of creating new accounts.
    """
    _require_configured(client)

    try:
        result = service.link_institution(db, body.public_token, user_id)
    except InstitutionBusyError as e:
        raise _busy(e)
    except ProviderError as e:
        logger.error("Failed to link Plaid item: %s", e)
        raise HTTPException(status_code=502, detail="Failed to link institution")

    return {
        "connection": ConnectionResponse.model_validate(result.connection),
        "accounts_created": result.accounts_created,
        "reconcile": vars(result.reconcile) if result.reconcile else None,
        "merges": [vars(m) for m in result.merges],
    }


# ------------------------------------------------------------------
# Connections
# ------------------------------------------------------------------


@router.get("/items", response_model=list[ConnectionResponse])
def list_items(
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    """List the current user's institution connections."""
    return ConnectionService.list_connections(db, user_id)


@router.delete("/items/{item_id}")
def purge_item(
    item_id: str,
    db: Session = Depends(get_db),
    client: PlaidClient = Depends(_get_plaid_client),
):
    """Admin purge: revoke the item with Plaid, then delete it and all its accounts."""
    connection = (
        db.query(InstitutionConnection).filter(InstitutionConnection.item_id == item_id).first()
    )
    if not connection:
        raise HTTPException(status_code=404, detail=f"Item not found: {item_id}")

    # Revoke the access token with Plaid; proceed with local delete even if this fails
    if connection.access_token and not connection.is_manual:
        try:
            client.remove_item(
                connection.access_token,
                context=CallContext(
                    institution_id=connection.institution_id, user_id=connection.user_id
                ),
            )
        except ProviderError as e:
            logger.warning("Failed to remove Plaid item remotely (removing locally anyway): %s", e)

    ConnectionService.purge_connection(db, connection.id)
    return {"status": "ok", "item_id": item_id}


# ------------------------------------------------------------------
# Institutions
# ------------------------------------------------------------------


@router.post("/institutions/{institution_id}/disconnect", response_model=DisconnectResponse)
def disconnect_institution(
    institution_id: str,
    db: Session = Depends(get_db),
    service: ConnectionService = Depends(get_connection_service),
):
    """Revoke and mark disconnected every active connection for an institution."""
    outcomes = service.disconnect_institution(db, institution_id)
    if not outcomes:
        raise HTTPException(
            status_code=404, detail=f"No active connections for institution {institution_id}"
        )
    return {"institution_id": institution_id, "connections": outcomes}


@router.post("/institutions/{institution_id}/reconcile", response_model=ReconcileResponse)
def reconcile_institution(
    institution_id: str,
    db: Session = Depends(get_db),
    service: ConnectionService = Depends(get_connection_service),
):
    """Remap local accounts onto the institution's newest connection.

    Conflicts are never resolved automatically; they are listed in
    ``conflictDetails`` for manual review.
    """
    try:
        result = service.reconciliation.reconcile(
            db, institution_id, lock_timeout=_lock_timeout()
        )
    except ConnectionNotFoundError:
        raise HTTPException(
            status_code=404, detail=f"No active connection for institution {institution_id}"
        )
    except InstitutionBusyError as e:
        raise _busy(e)
    except ProviderAuthError as e:
        logger.warning("Credential error reconciling institution %s: %s", institution_id, e)
        raise HTTPException(
            status_code=502,
            detail="The institution requires re-authentication before it can be reconciled.",
        )
    except ProviderError as e:
        logger.warning("Provider error reconciling institution %s: %s", institution_id, e)
        raise HTTPException(
            status_code=502,
            detail="A provider error occurred during reconciliation. Check the logs for details.",
        )
    return vars(result)


@router.post("/institutions/{institution_id}/refresh", response_model=list[RefreshResponse])
def refresh_institution(
    institution_id: str,
    db: Session = Depends(get_db),
    service: ConnectionService = Depends(get_connection_service),
):
    """Fetch current balances (and liabilities) for every active connection."""
    connections = (
        db.query(InstitutionConnection)
        .filter(
            InstitutionConnection.institution_id == institution_id,
            InstitutionConnection.status == "active",
        )
        .all()
    )
    connections = [c for c in connections if not c.is_manual and c.access_token]
    if not connections:
        raise HTTPException(
            status_code=404, detail=f"No active connection for institution {institution_id}"
        )

    results = []
    for connection in connections:
        try:
            results.append(vars(service.refresh_balances(db, connection)))
        except ProviderError as e:
            logger.warning("Balance refresh failed for connection %s: %s", connection.id, e)
            results.append({"connection_id": connection.id, "errors": [str(e)]})
    return results


@router.get(
    "/institutions/{institution_id}/duplicates",
    response_model=list[DuplicateGroupResponse],
)
def list_duplicates(institution_id: str, db: Session = Depends(get_db)):
    """Groups of active accounts that look like the same physical account."""
    return [
        {**vars(group), "should_merge": group.should_merge}
        for group in DuplicateService.detect_duplicates(db, institution_id)
    ]


@router.post(
    "/institutions/{institution_id}/duplicates/merge",
    response_model=list[MergeResponse],
)
def merge_duplicates(
    institution_id: str,
    body: Optional[MergeRequest] = Body(default=None),
    db: Session = Depends(get_db),
):
    """Merge duplicate accounts into their survivors.

    Without a ``key`` every mask-bearing group is merged. With a ``key``
    only that group is merged; name-only groups need ``allow_unmasked``.
    """
    body = body or MergeRequest()
    try:
        if body.key is None:
            results = DuplicateService.merge_institution(
                db, institution_id, lock_timeout=_lock_timeout()
            )
        else:
            groups = DuplicateService.detect_duplicates(db, institution_id)
            group = next((g for g in groups if g.key == body.key), None)
            if group is None:
                raise HTTPException(status_code=404, detail=f"No duplicate group {body.key}")
            try:
                results = [
                    DuplicateService.merge(
                        db, group,
                        allow_unmasked=body.allow_unmasked,
                        lock_timeout=_lock_timeout(),
                    )
                ]
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
    except InstitutionBusyError as e:
        raise _busy(e)
    return [vars(r) for r in results]


# ------------------------------------------------------------------
# Call ledger
# ------------------------------------------------------------------


@router.get("/usage", response_model=list[UsageEntry])
def get_usage(
    since: Optional[datetime] = Query(default=None),
    db: Session = Depends(get_db),
):
    """Plaid API call counts per endpoint, for billing audit."""
    return CallLedger.usage_summary(db, since=since)
