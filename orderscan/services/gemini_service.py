"""Gemini vision calls: document-type check and order-field extraction."""
import base64
import json
import logging
import threading
import time
from typing import Any, Dict

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from pydantic import ValidationError

from orderscan.core.errors import ConfigurationError, VisionServiceError
from orderscan.schemas import DocumentClassification, OrderExtraction, OrderForm, OrderItem

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (
    google_exceptions.ResourceExhausted,  # 429
    google_exceptions.ServiceUnavailable,  # 503
)

CLASSIFY_PROMPT = """
Analyze this document and determine if it is a quotation (見積書) or an order form (注文書/発注書).
Return true for isQuotation if it is either.

Respond with JSON only, using exactly these keys:
{
  "isQuotation": <boolean>,
  "documentType": "<the specific document type, e.g. Quotation, Invoice, Receipt, Other>",
  "reason": "<short reason for the classification>"
}
"""


def _describe_fields(model) -> str:
    return ",\n".join(
        f'"{field.alias or name}": "{field.description}"'
        for name, field in model.model_fields.items()
        if name != "items"
    )


def build_extraction_prompt() -> str:
    return f"""
You are a data extraction assistant. Extract the order information from the attached
quotation / order form and return it as JSON.

### Output schema:
{{
{_describe_fields(OrderForm)},
"items": [
  {{
{_describe_fields(OrderItem)}
  }}
]
}}

### Rules:
1. Add one entry to "items" for every line item in the document.
2. Use an empty string "" when a value cannot be found.
3. Numbers must not contain thousands separators.
"""


class GeminiVisionClient:
    def __init__(self, settings, sleep=time.sleep):
        self.settings = settings
        self._sleep = sleep
        self._model = None
        self._lock = threading.Lock()

    def _get_model(self):
        if self._model is None:
            with self._lock:
                if self._model is None:
                    if not self.settings.google_api_key:
                        logger.error("GOOGLE_API_KEY is not set")
                        raise ConfigurationError(
                            error="Server misconfiguration: GOOGLE_API_KEY is not set",
                            action="Ask the system administrator to set the GOOGLE_API_KEY environment variable.",
                        )
                    genai.configure(api_key=self.settings.google_api_key)
                    self._model = genai.GenerativeModel(
                        self.settings.gemini_model,
                        generation_config={"response_mime_type": "application/json"},
                    )
        return self._model

    def _generate(self, prompt: str, data_base64: str, mime_type: str):
        """Call the model, retrying rate limits and overloads with exponential backoff."""
        model = self._get_model()
        contents = [prompt, {"mime_type": mime_type, "data": base64.b64decode(data_base64)}]
        attempts = max(self.settings.gemini_max_retries, 1)
        for attempt in range(attempts):
            try:
                return model.generate_content(
                    contents,
                    request_options={"timeout": self.settings.gemini_timeout_seconds},
                )
            except RETRYABLE_ERRORS as e:
                if attempt < attempts - 1:
                    wait = self.settings.gemini_backoff_seconds * (2 ** attempt)
                    logger.warning(f"Gemini busy ({e.__class__.__name__}), retry {attempt + 1}/{attempts} in {wait}s")
                    self._sleep(wait)
                    continue
                raise VisionServiceError() from e
            except google_exceptions.GoogleAPIError as e:
                raise VisionServiceError() from e

    def _generate_json(self, prompt: str, data_base64: str, mime_type: str) -> Dict[str, Any]:
        response = self._generate(prompt, data_base64, mime_type)
        raw_text = response.text
        try:
            parsed = json.loads(raw_text)
        except (TypeError, ValueError) as e:
            logger.error(f"Gemini returned invalid JSON: {raw_text[:200]!r}")
            raise VisionServiceError(error="Invalid JSON returned by the model") from e
        if not isinstance(parsed, dict):
            raise VisionServiceError(error="Invalid JSON returned by the model")
        return parsed

    def classify(self, document) -> DocumentClassification:
        try:
            parsed = self._generate_json(CLASSIFY_PROMPT, document.data_base64, document.mime_type)
            return DocumentClassification.model_validate(parsed)
        except VisionServiceError as e:
            logger.error(f"Document classification failed: {e.__cause__ or e}")
            raise VisionServiceError(error="Document classification failed") from e
        except ValidationError as e:
            logger.error(f"Unexpected classification shape: {e}")
            raise VisionServiceError(error="Document classification failed") from e

    def extract_order(self, document) -> OrderExtraction:
        try:
            parsed = self._generate_json(build_extraction_prompt(), document.data_base64, document.mime_type)
        except VisionServiceError as e:
            logger.error(f"Order extraction failed: {e.__cause__ or e}")
            raise VisionServiceError(error="Order extraction failed") from e

        try:
            form = OrderForm.model_validate(parsed)
        except ValidationError as e:
            logger.warning(f"Schema validation failed: {e}")
            return OrderExtraction(extracted_data=parsed, warning="Validation failed")
        return OrderExtraction(extracted_data=form.model_dump(by_alias=True))
