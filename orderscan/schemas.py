# orderscan/schemas.py
import re
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Any, Dict, List, Optional

_FULLWIDTH_DIGITS = str.maketrans("０１２３４５６７８９．", "0123456789.")


def clean_number(value: Any) -> str:
    """Normalize a number the model read off a scan: '１，２００ ' -> '1200'."""
    if value is None:
        return ""
    text = str(value).translate(_FULLWIDTH_DIGITS)
    return re.sub(r"[,，\s]", "", text).strip()


class DocumentClassification(BaseModel):
    is_quotation: bool = Field(
        alias="isQuotation",
        description="Whether the document is a quotation, estimate, or purchase order form",
    )
    document_type: str = Field(
        alias="documentType",
        description="The specific type of the document (e.g., Quotation, Invoice, Receipt, Other)",
    )
    reason: str = Field(description="Short reason for the classification")

    class Config:
        populate_by_name = True


class ClassifyResponse(DocumentClassification):
    file_id: str = Field(alias="fileId")


class ClassifyRequest(BaseModel):
    file_base64: str = Field(alias="fileBase64", min_length=1)
    mime_type: str = Field(alias="mimeType", min_length=1)

    class Config:
        populate_by_name = True


class ExtractRequest(BaseModel):
    file_id: Optional[str] = Field(default=None, alias="fileId")
    file_base64: Optional[str] = Field(default=None, alias="fileBase64")
    mime_type: Optional[str] = Field(default=None, alias="mimeType")

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def _one_source(self):
        if not self.file_id and not (self.file_base64 and self.mime_type):
            raise ValueError("Either fileId or fileBase64 with mimeType is required")
        return self


class OrderItem(BaseModel):
    product_name: str = Field(default="", alias="productName", description="Product name")
    description: str = Field(default="", description="Item description or specification")
    quantity: str = Field(default="", description="Quantity")
    unit_price: str = Field(default="", alias="unitPrice", description="Unit price")
    amount: str = Field(default="", description="Line amount")

    class Config:
        populate_by_name = True

    @field_validator("quantity", "unit_price", "amount", mode="before")
    @classmethod
    def _clean_numbers(cls, v):
        return clean_number(v)

    @field_validator("product_name", "description", mode="before")
    @classmethod
    def _coerce_text(cls, v):
        return "" if v is None else str(v)


class OrderForm(BaseModel):
    order_no: str = Field(default="", alias="orderNo", description="Order number")
    quote_no: str = Field(default="", alias="quoteNo", description="Quotation number")
    items: List[OrderItem] = Field(default_factory=list, description="Line items of the quotation")
    total_amount: str = Field(default="", alias="totalAmount", description="Total amount (excluding tax)")
    desired_delivery_date: str = Field(default="", alias="desiredDeliveryDate", description="Desired delivery date")
    requested_delivery_date: str = Field(default="", alias="requestedDeliveryDate", description="Requested delivery date")
    payment_terms: str = Field(default="", alias="paymentTerms", description="Payment terms")
    delivery_location: str = Field(default="", alias="deliveryLocation", description="Delivery location")
    inspection_deadline: str = Field(default="", alias="inspectionDeadline", description="Inspection completion deadline")
    recipient_company: str = Field(default="", alias="recipientCompany", description="Recipient company name")
    issuer_company: str = Field(default="", alias="issuerCompany", description="Ordering (issuer) company name")
    issuer_address: str = Field(default="", alias="issuerAddress", description="Issuer address")
    phone: str = Field(default="", description="Phone number")
    fax: str = Field(default="", description="Fax number")
    manager: str = Field(default="", description="Person in charge")
    approver: str = Field(default="", description="Approver name")

    class Config:
        populate_by_name = True

    @field_validator("total_amount", mode="before")
    @classmethod
    def _clean_total(cls, v):
        return clean_number(v)

    @field_validator(
        "order_no", "quote_no", "desired_delivery_date", "requested_delivery_date",
        "payment_terms", "delivery_location", "inspection_deadline", "recipient_company",
        "issuer_company", "issuer_address", "phone", "fax", "manager", "approver",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, v):
        return "" if v is None else str(v)


class OrderExtraction(BaseModel):
    extracted_data: Dict[str, Any] = Field(alias="extractedData")
    warning: Optional[str] = None

    class Config:
        populate_by_name = True


class CacheStatsResponse(BaseModel):
    items: int
    total_bytes: int = Field(alias="totalBytes")
    max_item_bytes: int = Field(alias="maxItemBytes")
    max_total_bytes: int = Field(alias="maxTotalBytes")
    max_items: int = Field(alias="maxItems")
    ttl_seconds: float = Field(alias="ttlSeconds")

    class Config:
        populate_by_name = True


class ErrorResponse(BaseModel):
    error: str
    action: str | None = None
