"""Automation router - FastAPI endpoints for executing and managing automations"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ...database import get_db
from ...exceptions import AutomationError
from ...models_automation import AutomationExecution
from ...security import verify_cron_secret
from ...services.chatwoot_service import ChatwootGateway
from .schemas import (
    AppointmentEventRequest,
    AutomationCreate,
    AutomationResponse,
    AutomationTestRequest,
    AutomationUpdate,
    ExecuteRequest,
    ExecutionLogResponse,
    ExecutionResponse,
    ExecutionType,
)
from .service import MAX_EXECUTIONS_LIMIT, AutomationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/automations", tags=["Automations"])


def get_gateway(request: Request) -> ChatwootGateway:
    """Messaging bridge created at startup"""
    return request.app.state.gateway


def get_automation_service(
    db: Session = Depends(get_db),
    gateway: ChatwootGateway = Depends(get_gateway),
) -> AutomationService:
    """Dependency injection for AutomationService"""
    return AutomationService(db, gateway)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _server_error(error: str, e: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": error, "message": str(e), "timestamp": _timestamp()},
    )


def _execution_response(execution: AutomationExecution) -> ExecutionResponse:
    response = ExecutionResponse.model_validate(execution)
    if execution.executor is not None:
        response.executed_by_name = execution.executor.full_name
    return response


# ============================================================================
# EXECUTION
# ============================================================================


@router.post("/execute-automatic", dependencies=[Depends(verify_cron_secret)])
async def execute_automatic(service: AutomationService = Depends(get_automation_service)):
    """Run every due scheduled/event automation (called by an external cron)"""
    try:
        logger.info("⏰ Starting automatic automation execution")
        results = await service.execute_automatic_triggers()

        executed = [r for r in results if not r.get("skipped")]
        successful = sum(1 for r in executed if r["success"])
        failed = len(executed) - successful
        logger.info(
            f"✅ Automatic execution completed: {successful} successful, {failed} failed, "
            f"{len(results) - len(executed)} skipped"
        )

        return {
            "success": True,
            "message": "Automatic automations executed successfully",
            "timestamp": _timestamp(),
            "results": {
                "total": len(executed),
                "successful": successful,
                "failed": failed,
                "skipped": len(results) - len(executed),
                "details": results,
            },
        }
    except AutomationError:
        raise
    except Exception as e:
        logger.error(f"❌ Error executing automatic automations: {e}")
        return _server_error("Failed to execute automatic automations", e)


@router.post(
    "/events/appointments/{appointment_id}", dependencies=[Depends(verify_cron_secret)]
)
async def appointment_event(
    appointment_id: int,
    data: AppointmentEventRequest,
    service: AutomationService = Depends(get_automation_service),
):
    """Appointment webhook: run the event automations matching a new appointment or status change"""
    try:
        return await service.process_appointment_event(
            appointment_id, data.event, new_status=data.newStatus, old_status=data.oldStatus
        )
    except AutomationError:
        raise
    except Exception as e:
        logger.error(f"❌ Error processing appointment {appointment_id} event: {e}")
        return _server_error("Failed to process appointment event", e)


@router.get("/active")
async def get_active_automations(service: AutomationService = Depends(get_automation_service)):
    """All automations with status=active (debugging aid)"""
    automations = service.get_active_automations()
    return {
        "success": True,
        "automations": [AutomationResponse.model_validate(a) for a in automations],
    }


@router.get("/executions/{execution_id}/logs")
async def get_execution_logs(
    execution_id: int,
    service: AutomationService = Depends(get_automation_service),
):
    """Per-recipient outcomes of one execution"""
    logs = service.get_execution_logs(execution_id)
    return {"success": True, "logs": [ExecutionLogResponse.model_validate(log) for log in logs]}


@router.post("/{automation_id}/execute")
async def execute_automation(
    automation_id: int,
    data: ExecuteRequest,
    service: AutomationService = Depends(get_automation_service),
):
    """Manual execution of one automation on behalf of an operator"""
    if not data.userId:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "userId is required", "message": "userId is required"},
        )

    try:
        logger.info(f"▶️ Executing automation {automation_id} for user {data.userId}")
        result = await service.execute_automation(
            automation_id, executed_by=data.userId, execution_type=ExecutionType.MANUAL
        )
        return {
            "success": True,
            "message": result.message or "Automation executed successfully",
            "result": result.to_dict(),
        }
    except AutomationError:
        raise
    except Exception as e:
        logger.error(f"❌ Error executing automation {automation_id}: {e}")
        return _server_error("Failed to execute automation", e)


@router.get("/{automation_id}/executions")
async def get_automation_executions(
    automation_id: int,
    limit: int = Query(10, ge=1, le=MAX_EXECUTIONS_LIMIT),
    service: AutomationService = Depends(get_automation_service),
):
    """Most recent executions of one automation, newest first"""
    executions = service.get_automation_executions(automation_id, limit)
    return {"success": True, "executions": [_execution_response(e) for e in executions]}


@router.post("/{automation_id}/test")
async def test_automation(
    automation_id: int,
    data: AutomationTestRequest,
    service: AutomationService = Depends(get_automation_service),
):
    """Send the automation's message to a test phone"""
    return await service.test_automation(automation_id, data.phone)


# ============================================================================
# CRUD
# ============================================================================


@router.get("", response_model=list[AutomationResponse])
async def list_automations(
    clinic_id: int = Query(...),
    service: AutomationService = Depends(get_automation_service),
):
    return service.list_automations(clinic_id)


@router.get("/{automation_id}", response_model=AutomationResponse)
async def get_automation(
    automation_id: int,
    service: AutomationService = Depends(get_automation_service),
):
    return service.get_automation(automation_id)


@router.post("", response_model=AutomationResponse, status_code=201)
async def create_automation(
    data: AutomationCreate,
    service: AutomationService = Depends(get_automation_service),
):
    return service.create_automation(data)


@router.put("/{automation_id}", response_model=AutomationResponse)
async def update_automation(
    automation_id: int,
    data: AutomationUpdate,
    service: AutomationService = Depends(get_automation_service),
):
    return service.update_automation(automation_id, data)


@router.delete("/{automation_id}")
async def delete_automation(
    automation_id: int,
    service: AutomationService = Depends(get_automation_service),
):
    return service.delete_automation(automation_id)
