import pytest
from fastapi.testclient import TestClient

from secure_context import service
from secure_context.config import SiteRegistry
from secure_context.identity import InMemoryKeyStore
from secure_context.runtime import AttestationRuntime
from secure_context.signals import SignalSources

from fakes import FakeAttestationService


@pytest.fixture
def attestation_service():
    return FakeAttestationService()


@pytest.fixture
def runtime(attestation_service):
    return AttestationRuntime.from_config(
        session=attestation_service,
        key_store=InMemoryKeyStore(),
        sources=SignalSources.placeholders(lat=36.37, lng=-94.2, accuracy=8.0),
        registry=SiteRegistry(),
        loop_options={"interval_seconds": 60},
    )


# Install the runtime before startup so the app does not build one from the environment
@pytest.fixture
def client(runtime):
    service.RUNTIME = runtime
    try:
        with TestClient(service.app) as c:
            yield c
    finally:
        service.RUNTIME = None
