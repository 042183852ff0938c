"""Routing configuration API: rules, agents and business hours."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from ..core.auth import get_owner_id
from ..dispatch import schemas
from .dispatch import _service_context

router = APIRouter(prefix="/api", tags=["routing"])


# Assignment rules -----------------------------------------------------------
@router.get("/rules/assignment", response_model=schemas.AssignmentRuleList)
def list_assignment_rules(owner_id: str = Depends(get_owner_id)) -> schemas.AssignmentRuleList:
    with _service_context() as runtime:
        items = runtime.admin.list_assignment_rules(owner_id)
    return schemas.AssignmentRuleList(items=items, total=len(items))


@router.post(
    "/rules/assignment",
    response_model=schemas.AssignmentRule,
    status_code=status.HTTP_201_CREATED,
)
def create_assignment_rule(
    payload: schemas.AssignmentRuleCreate,
    owner_id: str = Depends(get_owner_id),
) -> schemas.AssignmentRule:
    with _service_context() as runtime:
        return runtime.admin.create_assignment_rule(owner_id, payload)


@router.get("/rules/assignment/{rule_id}", response_model=schemas.AssignmentRule)
def get_assignment_rule(
    rule_id: str, owner_id: str = Depends(get_owner_id)
) -> schemas.AssignmentRule:
    with _service_context() as runtime:
        return runtime.admin.get_assignment_rule(rule_id, owner_id)


@router.patch("/rules/assignment/{rule_id}", response_model=schemas.AssignmentRule)
def update_assignment_rule(
    rule_id: str,
    payload: schemas.AssignmentRuleUpdate,
    owner_id: str = Depends(get_owner_id),
) -> schemas.AssignmentRule:
    with _service_context() as runtime:
        return runtime.admin.update_assignment_rule(rule_id, owner_id, payload)


@router.delete("/rules/assignment/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_assignment_rule(rule_id: str, owner_id: str = Depends(get_owner_id)) -> Response:
    with _service_context() as runtime:
        runtime.admin.delete_assignment_rule(rule_id, owner_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Classification rules -------------------------------------------------------
@router.get("/rules/classification", response_model=schemas.ClassificationRuleList)
def list_classification_rules(
    owner_id: str = Depends(get_owner_id),
) -> schemas.ClassificationRuleList:
    with _service_context() as runtime:
        items = runtime.admin.list_classification_rules(owner_id)
    return schemas.ClassificationRuleList(items=items, total=len(items))


@router.post(
    "/rules/classification",
    response_model=schemas.ClassificationRule,
    status_code=status.HTTP_201_CREATED,
)
def create_classification_rule(
    payload: schemas.ClassificationRuleCreate,
    owner_id: str = Depends(get_owner_id),
) -> schemas.ClassificationRule:
    with _service_context() as runtime:
        return runtime.admin.create_classification_rule(owner_id, payload)


@router.get("/rules/classification/{rule_id}", response_model=schemas.ClassificationRule)
def get_classification_rule(
    rule_id: str, owner_id: str = Depends(get_owner_id)
) -> schemas.ClassificationRule:
    with _service_context() as runtime:
        return runtime.admin.get_classification_rule(rule_id, owner_id)


@router.patch("/rules/classification/{rule_id}", response_model=schemas.ClassificationRule)
def update_classification_rule(
    rule_id: str,
    payload: schemas.ClassificationRuleUpdate,
    owner_id: str = Depends(get_owner_id),
) -> schemas.ClassificationRule:
    with _service_context() as runtime:
        return runtime.admin.update_classification_rule(rule_id, owner_id, payload)


@router.delete("/rules/classification/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_classification_rule(
    rule_id: str, owner_id: str = Depends(get_owner_id)
) -> Response:
    with _service_context() as runtime:
        runtime.admin.delete_classification_rule(rule_id, owner_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# Agents ---------------------------------------------------------------------
@router.get("/agents", response_model=schemas.AgentList)
def list_agents(owner_id: str = Depends(get_owner_id)) -> schemas.AgentList:
    with _service_context() as runtime:
        items = runtime.admin.list_agents(owner_id)
    return schemas.AgentList(items=items, total=len(items))


@router.post("/agents", response_model=schemas.Agent, status_code=status.HTTP_201_CREATED)
def create_agent(
    payload: schemas.AgentCreate, owner_id: str = Depends(get_owner_id)
) -> schemas.Agent:
    with _service_context() as runtime:
        return runtime.admin.create_agent(owner_id, payload)


@router.get("/agents/{agent_id}", response_model=schemas.Agent)
def get_agent(agent_id: str, owner_id: str = Depends(get_owner_id)) -> schemas.Agent:
    with _service_context() as runtime:
        return runtime.admin.get_agent(agent_id, owner_id)


# Business hours -------------------------------------------------------------
@router.get("/business-hours", response_model=schemas.BusinessHours)
def get_business_hours(owner_id: str = Depends(get_owner_id)) -> schemas.BusinessHours:
    with _service_context() as runtime:
        return runtime.admin.get_business_hours(owner_id)


@router.put("/business-hours", response_model=schemas.BusinessHours)
def set_business_hours(
    payload: schemas.BusinessHoursUpdate, owner_id: str = Depends(get_owner_id)
) -> schemas.BusinessHours:
    with _service_context() as runtime:
        return runtime.admin.set_business_hours(owner_id, payload)
