"""Connection test endpoints."""

from fastapi import APIRouter, Depends

from ...errors import ReplicatorError
from ...orchestrator import ReplicationOrchestrator
from ..dependencies import get_orchestrator, http_error
from ..models import ConnectionTestRequest, ConnectionTestResponse, ServerInfo

router = APIRouter()


def _response(result) -> ConnectionTestResponse:
    return ConnectionTestResponse(
        success=result.success,
        message="Connection successful",
        server_info=ServerInfo(
            product_name=result.product_name,
            product_version=result.product_version,
            database_name=result.database_name,
        ),
        tables=result.tables,
    )


@router.post("/test", response_model=ConnectionTestResponse)
def test_connection(
    data: ConnectionTestRequest,
    orchestrator: ReplicationOrchestrator = Depends(get_orchestrator),
):
    """Test an ad-hoc connection string."""
    try:
        result = orchestrator.test_connection(data.connection_string)
    except ReplicatorError as e:
        raise http_error(e) from e
    return _response(result)


@router.post("/{connection_id}/test", response_model=ConnectionTestResponse)
def test_stored_connection(
    connection_id: str,
    orchestrator: ReplicationOrchestrator = Depends(get_orchestrator),
):
    """Test a saved connection."""
    try:
        result = orchestrator.test_stored_connection(connection_id)
    except ReplicatorError as e:
        raise http_error(e) from e
    return _response(result)
