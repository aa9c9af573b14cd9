from typing import List, Optional
import logging

import pandas as pd

from models import DashboardView, ExtractedData, GlobalStats, LedgerRow, MonthlyStats, Transaction

logger = logging.getLogger(__name__)

INCOME = 'income'
EXPENSE = 'expense'


def prepare_transaction_dataframe(transactions: List[Transaction]) -> pd.DataFrame:
    """
    Convert transactions into a DataFrame with income/expense split out.

    Columns: date, description, amount, category, month (YYYY-MM),
    income (positive amounts), expense (magnitude of negative amounts).
    """
    df = pd.DataFrame(
        [tx.model_dump() for tx in transactions],
        columns=['date', 'description', 'amount', 'category'],
    )

    if df.empty:
        logger.warning("No transactions found in input data")
        return df.assign(month=pd.Series(dtype=str), income=pd.Series(dtype=float),
                         expense=pd.Series(dtype=float))

    df['date'] = pd.to_datetime(df['date'])
    df['month'] = df['date'].dt.strftime('%Y-%m')
    df['amount'] = pd.to_numeric(df['amount'], errors='coerce').fillna(0.0)
    df['income'] = df['amount'].clip(lower=0.0)
    df['expense'] = (-df['amount']).clip(lower=0.0)
    return df


def calculate_monthly_stats(transactions: List[Transaction]) -> List[MonthlyStats]:
    """
    Sum income and expense per calendar month.

    Expense is reported as a positive magnitude; balance = income - expense.
    Months are returned in ascending order.
    """
    df = prepare_transaction_dataframe(transactions)
    if df.empty:
        return []

    grouped = df.groupby('month').agg({'income': 'sum', 'expense': 'sum'}).sort_index()

    monthly_stats = []
    for month, row in grouped.iterrows():
        income = round(float(row['income']), 2)
        expense = round(float(row['expense']), 2)
        monthly_stats.append(MonthlyStats(
            month=str(month),
            income=income,
            expense=expense,
            balance=round(income - expense, 2),
        ))
    return monthly_stats


def calculate_global_stats(transactions: List[Transaction]) -> GlobalStats:
    """Totals plus per-month averages over the distinct months present (at least 1)."""
    df = prepare_transaction_dataframe(transactions)

    total_income = round(float(df['income'].sum()), 2)
    total_expense = round(float(df['expense'].sum()), 2)
    month_count = max(int(df['month'].nunique()), 1)

    return GlobalStats(
        total_income=total_income,
        total_expense=total_expense,
        average_monthly_income=round(total_income / month_count, 2),
        average_monthly_expense=round(total_expense / month_count, 2),
        net_balance=round(total_income - total_expense, 2),
    )


def list_categories(transactions: List[Transaction]) -> List[str]:
    return sorted({tx.category for tx in transactions})


def filter_transactions(transactions: List[Transaction], search: Optional[str] = None,
                        category: Optional[str] = None, kind: Optional[str] = None) -> List[LedgerRow]:
    """
    Filter the ledger for display, newest first.

    Args:
        search: Case-insensitive substring of the description
        category: Exact category label
        kind: 'income' for inflows, 'expense' for outflows

    Returns:
        List[LedgerRow]: Matching rows tagged with their ledger index
    """
    if kind not in (None, INCOME, EXPENSE):
        raise ValueError(f"Unknown transaction kind: {kind}")

    needle = search.lower() if search else None
    rows = []
    for index, tx in enumerate(transactions):
        if needle and needle not in tx.description.lower():
            continue
        if category and tx.category != category:
            continue
        if kind == INCOME and tx.amount <= 0:
            continue
        if kind == EXPENSE and tx.amount >= 0:
            continue
        rows.append(LedgerRow(index=index, **tx.model_dump()))

    return sorted(rows, key=lambda row: row.date, reverse=True)


def build_dashboard(data: ExtractedData, search: Optional[str] = None,
                    category: Optional[str] = None, kind: Optional[str] = None) -> DashboardView:
    """
    Build the dashboard view. Aggregates cover the whole ledger; only the
    transaction list is filtered.
    """
    transactions = list(data.transactions)
    return DashboardView(
        bank_name=data.bank_name,
        account_holder=data.account_holder,
        months=calculate_monthly_stats(transactions),
        stats=calculate_global_stats(transactions),
        categories=list_categories(transactions),
        transactions=filter_transactions(transactions, search=search, category=category, kind=kind),
    )
