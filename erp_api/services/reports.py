"""
Financial statements as projections over posted journal lines.

Functions here are pure: they take the per-account debit/credit totals
returned by ledger.BALANCES_SQL (and, for cash flow, per-bank-account
movement totals) and shape them into report payloads.
"""

from datetime import date
from typing import Any

from erp_api.core.models import AccountType, money

REPORT_TYPES = ("profit-loss", "balance-sheet", "trial-balance", "cash-flow", "account-balances")
PERIOD_REPORTS = ("profit-loss", "cash-flow")

COGS_RANGE = (5000, 5999)

CASH_POSITIONS_SQL = """
    SELECT b.id, b.name, b.account_type, b.opening_balance,
           COALESCE(SUM(t.amount) FILTER (WHERE t.type = 'deposit' AND t.date < %(start)s), 0) AS inflow_before,
           COALESCE(SUM(t.amount) FILTER (WHERE t.type = 'withdrawal' AND t.date < %(start)s), 0) AS outflow_before,
           COALESCE(SUM(t.amount) FILTER (WHERE t.type = 'deposit' AND t.date BETWEEN %(start)s AND %(end)s), 0) AS inflow,
           COALESCE(SUM(t.amount) FILTER (WHERE t.type = 'withdrawal' AND t.date BETWEEN %(start)s AND %(end)s), 0) AS outflow
    FROM bank_accounts b
    LEFT JOIN bank_transactions t ON t.bank_account_id = b.id AND t.date <= %(end)s
    WHERE b.is_active
    GROUP BY b.id
    ORDER BY b.account_type, b.name
"""


def natural_balance(row: dict[str, Any]) -> float:
    """Balance on the account's normal side (positive for a normal balance)."""
    debit, credit = float(row["debit"] or 0), float(row["credit"] or 0)
    if AccountType(row["account_type"]).normal_balance == "DEBIT":
        return round(debit - credit, 2)
    return round(credit - debit, 2)


def _line(row: dict[str, Any], amount: float) -> dict[str, Any]:
    return {
        "account_code": row["account_code"],
        "account_name": row["account_name"],
        "amount": money(amount),
    }


def _is_cogs(account_code: str) -> bool:
    try:
        code = int(account_code)
    except ValueError:
        return False
    return COGS_RANGE[0] <= code <= COGS_RANGE[1]


def trial_balance(rows: list[dict[str, Any]], as_of: date) -> dict[str, Any]:
    """Net each account to a single debit or credit figure."""
    data = []
    total_debit = total_credit = 0.0
    for row in rows:
        net = round(float(row["debit"] or 0) - float(row["credit"] or 0), 2)
        if net == 0:
            continue
        debit, credit = (net, 0.0) if net > 0 else (0.0, -net)
        total_debit += debit
        total_credit += credit
        data.append({
            "account_code": row["account_code"],
            "account_name": row["account_name"],
            "account_type": row["account_type"],
            "debit": money(debit),
            "credit": money(credit),
        })

    return {
        "report_type": "Trial Balance",
        "as_of_date": as_of.isoformat(),
        "data": data,
        "summary": {
            "total_debit": money(total_debit),
            "total_credit": money(total_credit),
            "difference": money(total_debit - total_credit),
            "is_balanced": abs(total_debit - total_credit) < 0.01,
        },
    }


def balance_sheet(rows: list[dict[str, Any]], as_of: date) -> dict[str, Any]:
    """
    Assets against liabilities and equity as of a date.

    Revenue minus expenses not yet closed to retained earnings is shown as
    current period earnings inside equity, so a balanced ledger always gives
    ``balance_check == 0``.
    """
    sections: dict[str, list[dict[str, Any]]] = {"ASSETS": [], "LIABILITIES": [], "EQUITY": []}
    totals = {AccountType.ASSET: 0.0, AccountType.LIABILITY: 0.0, AccountType.EQUITY: 0.0}
    earnings = 0.0

    for row in rows:
        account_type = AccountType(row["account_type"])
        amount = natural_balance(row)
        if account_type is AccountType.REVENUE:
            earnings += amount
            continue
        if account_type is AccountType.EXPENSE:
            earnings -= amount
            continue
        if abs(amount) < 0.01:
            continue
        totals[account_type] += amount
        key = {AccountType.ASSET: "ASSETS", AccountType.LIABILITY: "LIABILITIES"}.get(account_type, "EQUITY")
        sections[key].append(_line(row, amount))

    if abs(earnings) >= 0.01:
        sections["EQUITY"].append({
            "account_code": None,
            "account_name": "Current Period Earnings",
            "amount": money(earnings),
        })

    total_assets = totals[AccountType.ASSET]
    total_liabilities = totals[AccountType.LIABILITY]
    total_equity = totals[AccountType.EQUITY] + earnings

    return {
        "report_type": "Balance Sheet",
        "as_of_date": as_of.isoformat(),
        "sections": sections,
        "summary": {
            "total_assets": money(total_assets),
            "total_liabilities": money(total_liabilities),
            "total_equity": money(total_equity),
            "current_earnings": money(earnings),
            "balance_check": money(total_assets - (total_liabilities + total_equity)),
        },
        "data": sections["ASSETS"] + sections["LIABILITIES"] + sections["EQUITY"],
    }


def profit_loss(rows: list[dict[str, Any]], start: date, end: date) -> dict[str, Any]:
    """Revenue, cost of goods sold (5000-5999) and operating expenses for a period."""
    sections: dict[str, list[dict[str, Any]]] = {"REVENUE": [], "COST_OF_GOODS_SOLD": [], "EXPENSES": []}
    revenue = cogs = expenses = 0.0

    for row in rows:
        account_type = AccountType(row["account_type"])
        amount = natural_balance(row)
        if abs(amount) < 0.01:
            continue
        if account_type is AccountType.REVENUE:
            revenue += amount
            sections["REVENUE"].append(_line(row, amount))
        elif account_type is AccountType.EXPENSE and _is_cogs(row["account_code"]):
            cogs += amount
            sections["COST_OF_GOODS_SOLD"].append(_line(row, amount))
        elif account_type is AccountType.EXPENSE:
            expenses += amount
            sections["EXPENSES"].append(_line(row, amount))

    gross_profit = revenue - cogs
    net_income = gross_profit - expenses

    return {
        "report_type": "Profit & Loss Statement",
        "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        "sections": sections,
        "summary": {
            "total_revenue": money(revenue),
            "total_cogs": money(cogs),
            "gross_profit": money(gross_profit),
            "total_expenses": money(expenses),
            "net_income": money(net_income),
            "gross_margin_pct": money(gross_profit / revenue * 100) if revenue else 0.0,
            "net_margin_pct": money(net_income / revenue * 100) if revenue else 0.0,
        },
        "data": sections["REVENUE"] + sections["COST_OF_GOODS_SOLD"] + sections["EXPENSES"],
    }


def account_balances(rows: list[dict[str, Any]], as_of: date) -> dict[str, Any]:
    """Every active account with its balance, plus a total per account type."""
    data = []
    by_type = {account_type.value: 0.0 for account_type in AccountType}
    for row in rows:
        amount = natural_balance(row)
        by_type[row["account_type"]] += amount
        data.append({
            "account_code": row["account_code"],
            "account_name": row["account_name"],
            "account_type": row["account_type"],
            "parent_code": row.get("parent_code"),
            "debit": money(row["debit"]),
            "credit": money(row["credit"]),
            "balance": amount,
        })

    return {
        "report_type": "Account Balances",
        "as_of_date": as_of.isoformat(),
        "data": data,
        "summary": {key: money(value) for key, value in by_type.items()},
    }


def cash_positions(rows: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], dict[str, float]]:
    """
    Opening/closing position of each bank, UPI and cash account.

    Each row carries the account's ``opening_balance`` plus deposit/withdrawal
    totals before the period (``inflow_before``/``outflow_before``) and
    inside it (``inflow``/``outflow``).
    """
    accounts = []
    totals = {"opening": 0.0, "inflow": 0.0, "outflow": 0.0, "closing": 0.0}
    for row in rows:
        opening = float(row["opening_balance"] or 0) + float(row["inflow_before"] or 0) - float(row["outflow_before"] or 0)
        inflow = float(row["inflow"] or 0)
        outflow = float(row["outflow"] or 0)
        closing = opening + inflow - outflow
        accounts.append({
            "bank_account_id": row["id"],
            "name": row["name"],
            "account_type": row["account_type"],
            "opening_balance": money(opening),
            "inflow": money(inflow),
            "outflow": money(outflow),
            "net_change": money(inflow - outflow),
            "closing_balance": money(closing),
        })
        totals["opening"] += opening
        totals["inflow"] += inflow
        totals["outflow"] += outflow
        totals["closing"] += closing
    return accounts, {key: money(value) for key, value in totals.items()}


def cash_flow(rows: list[dict[str, Any]], start: date, end: date) -> dict[str, Any]:
    """Money in and out of every cash-like account over a period."""
    accounts, totals = cash_positions(rows)
    return {
        "report_type": "Cash Flow Statement",
        "period": {"start_date": start.isoformat(), "end_date": end.isoformat()},
        "data": accounts,
        "summary": {
            "opening_cash": totals["opening"],
            "total_inflow": totals["inflow"],
            "total_outflow": totals["outflow"],
            "net_cash_flow": money(totals["inflow"] - totals["outflow"]),
            "closing_cash": totals["closing"],
        },
    }
