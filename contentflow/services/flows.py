from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from uuid import uuid4

from pydantic import ValidationError

from contentflow.repositories import KeyValueStore
from contentflow.schemas import (
    DESTINATION_FIELDS,
    SOURCE_FIELDS,
    Flow,
    FlowCreateRequest,
    FlowTemplate,
    FlowUpdateRequest,
)

logger = logging.getLogger(__name__)

FLOWS_KEY = "flows"
DEFAULT_FLOW_TITLE = "Untitled Flow"
DEFAULT_FLOW_DESCRIPTION = "No description"

_DESTINATION_ALIASES = {"Alt Text (Images)": "Alt Text"}

FLOW_TEMPLATES: tuple[FlowTemplate, ...] = (
    FlowTemplate(
        id="careInstructions",
        title="Product Care Instructions",
        description="Create product care instructions based on attributes.",
        sourceFields=["Product Description"],
        destinations=["Product Description"],
        prompt="Create product care instructions based on the product's attributes.",
    ),
    FlowTemplate(
        id="altText",
        title="Product Image Alt Text",
        description="Generate SEO optimized image alt texts.",
        selectionType="images",
        sourceFields=["Images"],
        destinations=["Alt Text"],
        prompt="Generate SEO optimized image alt texts for the provided product images.",
    ),
    FlowTemplate(
        id="seoDescription",
        title="Generate SEO Description",
        description="Generate a SEO optimized product description from product title and description.",
        sourceFields=["Product Title", "Product Description"],
        destinations=["SEO Description"],
        prompt="Generate a SEO optimized product description from the given title and description.",
    ),
    FlowTemplate(
        id="seoTitle",
        title="Generate SEO Title",
        description="Generate a SEO optimized product title from product title and description.",
        sourceFields=["Product Title", "Product Description"],
        destinations=["SEO Title"],
        prompt="Generate a SEO optimized product title from the given title and description.",
    ),
    FlowTemplate(
        id="tagsFromImages",
        title="Generate Tags Based on Product Images",
        description="Generate tags used for filtering or categorization.",
        selectionType="images",
        sourceFields=["Images"],
        destinations=["Tags"],
        prompt="Generate relevant product tags based on the provided product images.",
    ),
    FlowTemplate(
        id="titleFromImages",
        title="Product Title Based on Product Images",
        description="Generate a product title based on product images.",
        selectionType="images",
        sourceFields=["Images"],
        destinations=["Product Title"],
        prompt="Generate a compelling product title based on the provided product images.",
    ),
    FlowTemplate(
        id="descriptionFromImage",
        title="Description from Image",
        description="Create a product description from your image.",
        selectionType="images",
        sourceFields=["Images"],
        destinations=["Product Description"],
        prompt="Create a detailed product description from your product image.",
    ),
)


class FlowNotFoundError(LookupError):
    pass


class FlowValidationError(ValueError):
    pass


def get_template(template_id: str) -> FlowTemplate:
    for template in FLOW_TEMPLATES:
        if template.id == template_id:
            return template
    raise FlowNotFoundError(f"Flow template not found: {template_id}")


def _normalize_fields(values: Iterable[str], *, allowed: Sequence[str], kind: str) -> list[str]:
    normalized: list[str] = []
    unknown: list[str] = []
    for raw in values:
        value = _DESTINATION_ALIASES.get(raw.strip(), raw.strip())
        if not value:
            continue
        if value not in allowed:
            unknown.append(value)
            continue
        if value not in normalized:
            normalized.append(value)
    if unknown:
        raise FlowValidationError(f"Unknown {kind} field(s): {', '.join(unknown)}")
    return normalized


def validate_flow_fields(source_fields: Iterable[str], destinations: Iterable[str]) -> tuple[list[str], list[str]]:
    sources = _normalize_fields(source_fields, allowed=SOURCE_FIELDS, kind="source")
    targets = _normalize_fields(destinations, allowed=DESTINATION_FIELDS, kind="destination")
    if not sources or not targets:
        raise FlowValidationError("Please select at least one source and one destination field.")
    return sources, targets


class FlowStore:
    """Flow definitions kept as one array under the ``flows`` key."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def _load(self) -> list[Flow]:
        raw = self._store.get(FLOWS_KEY)
        if raw is None:
            return []
        if not isinstance(raw, list):
            logger.warning("Stored flows are not a list; resetting", extra={"type": type(raw).__name__})
            self._store.delete(FLOWS_KEY)
            return []

        flows: list[Flow] = []
        for item in raw:
            try:
                flows.append(Flow.model_validate(item))
            except ValidationError:
                logger.warning("Skipping invalid stored flow", extra={"flow": item})
        return flows

    def _save(self, flows: list[Flow]) -> None:
        self._store.set(FLOWS_KEY, [flow.model_dump(mode="json") for flow in flows])

    def list_flows(self) -> list[Flow]:
        return self._load()

    def get_flow(self, flow_id: str) -> Flow:
        for flow in self._load():
            if flow.id == flow_id:
                return flow
        raise FlowNotFoundError(f"Flow not found: {flow_id}")

    def create_flow(self, payload: FlowCreateRequest) -> Flow:
        template = get_template(payload.preset) if payload.preset else None

        source_fields = payload.sourceFields
        destinations = payload.destinations
        if template is not None:
            source_fields = source_fields if source_fields is not None else template.sourceFields
            destinations = destinations if destinations is not None else template.destinations
        sources, targets = validate_flow_fields(source_fields or [], destinations or [])

        prompt = payload.prompt
        if prompt is None and template is not None:
            prompt = template.prompt

        flow = Flow(
            id=str(uuid4()),
            title=payload.title or (template.title if template else None) or DEFAULT_FLOW_TITLE,
            description=(
                payload.description or (template.description if template else None) or DEFAULT_FLOW_DESCRIPTION
            ),
            selectionType=payload.selectionType or (template.selectionType if template else "products"),
            sourceFields=sources,
            destinations=targets,
            prompt=(prompt or "").strip(),
        )
        flows = self._load()
        flows.append(flow)
        self._save(flows)
        logger.info("Flow created", extra={"flow_id": flow.id, "preset": payload.preset})
        return flow

    def update_flow(self, flow_id: str, payload: FlowUpdateRequest) -> Flow:
        flows = self._load()
        for index, flow in enumerate(flows):
            if flow.id != flow_id:
                continue
            updates = payload.model_dump(exclude_unset=True)
            merged = flow.model_copy(update={key: value for key, value in updates.items() if value is not None})
            sources, targets = validate_flow_fields(merged.sourceFields, merged.destinations)
            updated = merged.model_copy(
                update={"sourceFields": sources, "destinations": targets, "prompt": merged.prompt.strip()}
            )
            flows[index] = updated
            self._save(flows)
            logger.info("Flow updated", extra={"flow_id": flow_id})
            return updated
        raise FlowNotFoundError(f"Flow not found: {flow_id}")

    def delete_flow(self, flow_id: str) -> None:
        flows = self._load()
        remaining = [flow for flow in flows if flow.id != flow_id]
        if len(remaining) == len(flows):
            raise FlowNotFoundError(f"Flow not found: {flow_id}")
        self._save(remaining)
        logger.info("Flow deleted", extra={"flow_id": flow_id})
