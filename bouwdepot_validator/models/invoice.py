"""Invoice data model"""

from pydantic import BaseModel, Field
from datetime import date
from typing import Optional, List


class PaymentDetails(BaseModel):
    """Bank account the vendor asks to be paid on"""

    account_holder_name: str = Field("", description="Name on the receiving account")
    iban: str = Field("", description="IBAN of the receiving account")
    bic: str = Field("", description="BIC of the receiving bank")
    bank_name: str = Field("", description="Name of the receiving bank")
    payment_reference: str = Field("", description="Payment reference on the invoice")

    @property
    def masked_iban(self) -> str:
        if not self.iban or len(self.iban) < 8:
            return self.iban
        return self.iban[:4] + "****" + self.iban[-4:]


class LineItem(BaseModel):
    """Single invoice line"""

    description: str = Field("", description="Line item description")
    quantity: float = Field(1, description="Billed quantity")
    unit_price: float = Field(0.0, description="Unit price as printed on the invoice")
    total_price: float = Field(0.0, description="Line total")
    vat_rate: Optional[float] = Field(None, description="VAT percentage")

    @property
    def effective_unit_price(self) -> float:
        """Unit price derived from the line total; non-positive quantities count as one"""
        quantity = self.quantity if self.quantity and self.quantity > 0 else 1
        return self.total_price / quantity


class VisualAnalysis(BaseModel):
    """Layout signals reported by the extractor"""

    has_logo: bool = False
    has_stamp: bool = False
    has_table_structure: bool = False
    detected_anomalies: List[str] = Field(default_factory=list)


class Invoice(BaseModel):
    """Invoice extracted from a submitted document"""

    file_name: str = Field("", description="Original file name")
    invoice_number: str = Field("", description="Invoice number")
    invoice_date: Optional[date] = Field(None, description="Invoice date")
    due_date: Optional[date] = Field(None, description="Payment due date")
    total_amount: float = Field(0.0, description="Invoice total including VAT")
    vat_amount: float = Field(0.0, description="VAT amount")
    currency: str = Field("EUR", description="ISO currency code")
    vendor_name: str = Field("", description="Vendor name as printed")
    vendor_address: str = Field("", description="Vendor address")
    vendor_kvk_number: str = Field("", description="Chamber of Commerce number")
    vendor_btw_number: str = Field("", description="VAT (BTW) number")
    line_items: List[LineItem] = Field(default_factory=list)
    payment_details: Optional[PaymentDetails] = None
    visual_analysis: Optional[VisualAnalysis] = None
    page_count: int = 0
    raw_text: str = ""
    page_images: List[bytes] = Field(default_factory=list, exclude=True)

    @property
    def has_tax_id(self) -> bool:
        return bool(self.vendor_kvk_number or self.vendor_btw_number)

    def missing_critical_fields(self) -> List[str]:
        """Names of the critical fields extraction failed to populate"""
        missing = []
        if not self.invoice_number:
            missing.append('invoice_number')
        if self.invoice_date is None:
            missing.append('invoice_date')
        if self.total_amount <= 0:
            missing.append('total_amount')
        return missing

    class Config:
        json_schema_extra = {
            "example": {
                "file_name": "factuur-2025-014.pdf",
                "invoice_number": "2025-014",
                "invoice_date": "2025-02-03",
                "total_amount": 1815.00,
                "vat_amount": 315.00,
                "vendor_name": "Loodgietersbedrijf De Vries",
                "vendor_kvk_number": "87654321",
                "line_items": [
                    {"description": "Bathroom installation", "quantity": 1, "total_price": 1500.00}
                ],
                "payment_details": {"account_holder_name": "L. de Vries", "iban": "NL39RABO0300065264"}
            }
        }
