"""
Pydantic schemas for API requests
"""

from decimal import Decimal
from datetime import date
from typing import Optional
from pydantic import BaseModel, Field


class CreateBorrowerRequest(BaseModel):
    borrower_name: str
    principal_amount: Decimal = Field(..., description="Principal lent, greater than zero")
    interest_amount: Decimal = Field(..., description="Monthly rate in percent, or flat monthly amount")
    interest_is_percent: bool = False
    date_provided: date
    notes: Optional[str] = ""


class AddLoanRequest(BaseModel):
    principal_amount: Decimal
    interest_amount: Decimal
    interest_is_percent: bool = False
    date_provided: date
    notes: Optional[str] = ""


class UpdateBorrowerRequest(BaseModel):
    borrower_name: Optional[str] = None
    principal_amount: Optional[Decimal] = None
    interest_amount: Optional[Decimal] = None
    interest_is_percent: Optional[bool] = None
    date_provided: Optional[date] = None
    notes: Optional[str] = None


class UpdateLoanStatusRequest(BaseModel):
    status: str = Field(..., description="Loan status (active, paid_off, written_off)")


class MarkCollectedRequest(BaseModel):
    collected_date: Optional[str] = Field(None, description="ISO-8601 date or datetime, defaults to now")
    amount_collected: Optional[Decimal] = Field(None, description="Defaults to the loan's monthly interest")
    notes: Optional[str] = None


class UpdateUserStatusRequest(BaseModel):
    is_active: bool
