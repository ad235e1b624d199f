# -*- coding: utf-8 -*-
"""
Payment webhook schemas.

Providers disagree on field naming (orderId / order_id / order_reference);
the payload model accepts all of them and normalizes to one shape.
"""
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class WebhookPayload(BaseModel):
    """Normalized payment notification."""
    model_config = ConfigDict(extra='ignore')

    order_reference: Optional[str] = Field(
        None,
        validation_alias=AliasChoices('order_reference', 'orderId', 'order_id'),
        max_length=128,
        description="Order id the payment belongs to")
    status: Optional[str] = Field(
        None, max_length=64, description="Provider payment status")
    tx_reference: Optional[str] = Field(
        None,
        validation_alias=AliasChoices('tx_reference', 'txId', 'tx_id'),
        max_length=128,
        description="Provider settlement transaction id")

    @field_validator('order_reference', 'status', 'tx_reference', mode='before')
    @classmethod
    def coerce_text(cls, v):
        """Accept numeric ids; blank strings read as missing."""
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            v = str(v)
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v
