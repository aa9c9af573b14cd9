import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Transaction(BaseModel):
    date: datetime.date
    description: str
    amount: float  # negative = outflow, positive = inflow
    category: str = "General"


class LedgerRow(Transaction):
    index: int  # position in ExtractedData.transactions


class ExtractedData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transactions: List[Transaction] = Field(default_factory=list)
    bank_name: Optional[str] = Field(default=None, alias="bankName")
    account_holder: Optional[str] = Field(default=None, alias="accountHolder")


class WireTransaction(BaseModel):
    d: datetime.date
    t: str
    v: float
    c: str

    def to_transaction(self) -> Transaction:
        return Transaction(date=self.d, description=self.t, amount=self.v, category=self.c)


class ChunkExtraction(BaseModel):
    """
    One chunk's validated extraction result.

    Field aliases are the compact wire keys of the response schema
    (b = bank, h = holder, tx = transactions, d/t/v/c = date/text/value/category).
    """
    model_config = ConfigDict(populate_by_name=True)

    bank_name: Optional[str] = Field(default=None, alias="b")
    account_holder: Optional[str] = Field(default=None, alias="h")
    transactions: List[WireTransaction] = Field(alias="tx")

    def to_transactions(self) -> List[Transaction]:
        return [tx.to_transaction() for tx in self.transactions]


class MonthlyStats(BaseModel):
    month: str  # YYYY-MM
    income: float
    expense: float
    balance: float


class GlobalStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_income: float = Field(alias="totalIncome")
    total_expense: float = Field(alias="totalExpense")
    average_monthly_income: float = Field(alias="averageMonthlyIncome")
    average_monthly_expense: float = Field(alias="averageMonthlyExpense")
    net_balance: float = Field(alias="netBalance")


class DashboardView(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bank_name: Optional[str] = Field(default=None, alias="bankName")
    account_holder: Optional[str] = Field(default=None, alias="accountHolder")
    months: List[MonthlyStats]
    stats: GlobalStats
    categories: List[str]
    transactions: List[LedgerRow]


class AppState(str, Enum):
    IDLE = "IDLE"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class SessionState(BaseModel):
    session_id: str
    state: AppState = AppState.IDLE
    data: Optional[ExtractedData] = None
    error: Optional[str] = None
    progress: int = 0
    message: str = "Session initialized."
    filenames: List[str] = Field(default_factory=list)

