from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from contentflow.config import settings
from contentflow.db import get_session
from contentflow.llm import LLMClient
from contentflow.repositories import KeyValueStore, SqlKeyValueStore
from contentflow.services.flows import FlowStore
from contentflow.services.runs import RunStore
from contentflow.shopify_api import ShopifyApiClient

shopify_api = ShopifyApiClient()
llm_client = LLMClient()


def get_shopify_api() -> ShopifyApiClient:
    return shopify_api


def get_llm_client() -> LLMClient:
    return llm_client


def get_kv_store(session: Session = Depends(get_session)) -> KeyValueStore:
    return SqlKeyValueStore(session)


def get_flow_store(store: KeyValueStore = Depends(get_kv_store)) -> FlowStore:
    return FlowStore(store)


def get_run_store(store: KeyValueStore = Depends(get_kv_store)) -> RunStore:
    return RunStore(store, ttl_seconds=settings.RUN_TTL_SECONDS)
