import base64

import pytest
from fastapi.testclient import TestClient

from orderscan.core.settings import Settings
from orderscan.main import create_app
from orderscan.schemas import DocumentClassification, OrderExtraction

MB = 1024 * 1024


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeVision:
    """Stands in for GeminiVisionClient; records what it was asked to do."""

    def __init__(self, is_quotation=True, fail_classify=None):
        self.is_quotation = is_quotation
        self.fail_classify = fail_classify
        self.classify_calls = []
        self.extract_calls = []

    def classify(self, document):
        self.classify_calls.append(document)
        if self.fail_classify is not None:
            raise self.fail_classify
        return DocumentClassification(
            is_quotation=self.is_quotation,
            document_type="Quotation" if self.is_quotation else "Invoice",
            reason="Header reads 御見積書",
        )

    def extract_order(self, document):
        self.extract_calls.append(document)
        return OrderExtraction(extracted_data={"orderNo": "PO-1", "items": [], "bytes": document.size_bytes})


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def vision():
    return FakeVision()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        environment="production",
        api_secret="test-secret",
        file_token_mode="hmac",
        rate_limit_enabled=False,
        log_json=False,
        file_cache_sweep_interval_seconds=3600,
    )


@pytest.fixture
def app(settings, vision, clock):
    return create_app(settings, vision_client=vision, clock=clock)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
