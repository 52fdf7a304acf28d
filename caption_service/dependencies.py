from typing import Callable
from fastapi import Request
from caption_service.storage.dynamodb import DynamoDBService
from caption_service.storage.filesystem import SessionStorage
from caption_service.captions.jobs import JobRegistry
from caption_service.captions.client import OpenAICaptioner

def get_storage(request: Request) -> SessionStorage:
    """Dependency provider for SessionStorage"""
    return request.app.state.storage

def get_dynamodb_service(request: Request) -> DynamoDBService:
    """Dependency provider for DynamoDBService"""
    return request.app.state.db

def get_job_registry(request: Request) -> JobRegistry:
    """Dependency provider for the in-process JobRegistry"""
    return request.app.state.jobs

def get_captioner_factory(request: Request) -> Callable[[str], OpenAICaptioner]:
    """Dependency provider for the captioner factory (API key -> captioner)"""
    return request.app.state.captioner_factory
