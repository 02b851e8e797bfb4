from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from contentflow.deps import get_flow_store
from contentflow.schemas import Flow, FlowCreateRequest, FlowTemplate, FlowUpdateRequest
from contentflow.services.flows import (
    FLOW_TEMPLATES,
    FlowNotFoundError,
    FlowStore,
    FlowValidationError,
)

router = APIRouter(prefix="/flows", tags=["flows"])


@router.get("/templates", response_model=list[FlowTemplate])
def list_flow_templates():
    return list(FLOW_TEMPLATES)


@router.get("", response_model=list[Flow])
def list_flows(flows: FlowStore = Depends(get_flow_store)):
    return flows.list_flows()


@router.post("", response_model=Flow, status_code=status.HTTP_201_CREATED)
def create_flow(payload: FlowCreateRequest, flows: FlowStore = Depends(get_flow_store)):
    try:
        return flows.create_flow(payload)
    except FlowNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except FlowValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.get("/{flow_id}", response_model=Flow)
def get_flow(flow_id: str, flows: FlowStore = Depends(get_flow_store)):
    try:
        return flows.get_flow(flow_id)
    except FlowNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.put("/{flow_id}", response_model=Flow)
def update_flow(flow_id: str, payload: FlowUpdateRequest, flows: FlowStore = Depends(get_flow_store)):
    try:
        return flows.update_flow(flow_id, payload)
    except FlowNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except FlowValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.delete("/{flow_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_flow(flow_id: str, flows: FlowStore = Depends(get_flow_store)):
    try:
        flows.delete_flow(flow_id)
    except FlowNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
