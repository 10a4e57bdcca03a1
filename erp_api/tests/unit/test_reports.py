"""Unit tests for financial reports."""

from datetime import date

from erp_api.services import reports

AS_OF = date(2026, 1, 31)


def test_natural_balance_follows_account_type():
    assert reports.natural_balance({"account_type": "ASSET", "debit": 500, "credit": 200}) == 300
    assert reports.natural_balance({"account_type": "REVENUE", "debit": 0, "credit": 1000}) == 1000
    assert reports.natural_balance({"account_type": "LIABILITY", "debit": 50, "credit": None}) == -50


class TestTrialBalance:
    def test_debits_equal_credits(self, balanced_ledger_rows):
        report = reports.trial_balance(balanced_ledger_rows, AS_OF)
        summary = report["summary"]
        assert summary["total_debit"] == 1500
        assert summary["total_credit"] == 1500
        assert summary["difference"] == 0
        assert summary["is_balanced"] is True

    def test_zero_accounts_omitted(self, balanced_ledger_rows):
        report = reports.trial_balance(balanced_ledger_rows, AS_OF)
        codes = [row["account_code"] for row in report["data"]]
        assert "2000" not in codes
        assert report["as_of_date"] == "2026-01-31"

    def test_accounts_net_to_one_side(self, balanced_ledger_rows):
        report = reports.trial_balance(balanced_ledger_rows, AS_OF)
        receivable = next(row for row in report["data"] if row["account_code"] == "1200")
        assert receivable["debit"] == 400
        assert receivable["credit"] == 0


class TestBalanceSheet:
    def test_balance_check_is_zero(self, balanced_ledger_rows):
        report = reports.balance_sheet(balanced_ledger_rows, AS_OF)
        summary = report["summary"]
        assert summary["total_assets"] == 1300
        assert summary["total_liabilities"] == 0
        assert summary["current_earnings"] == 800
        assert summary["total_equity"] == 1300
        assert summary["balance_check"] == 0

    def test_current_earnings_shown_in_equity(self, balanced_ledger_rows):
        report = reports.balance_sheet(balanced_ledger_rows, AS_OF)
        names = [line["account_name"] for line in report["sections"]["EQUITY"]]
        assert names == ["Owner's Equity", "Current Period Earnings"]

    def test_unbalanced_ledger_is_visible(self, balanced_ledger_rows):
        balanced_ledger_rows[1]["debit"] += 10
        report = reports.balance_sheet(balanced_ledger_rows, AS_OF)
        assert report["summary"]["balance_check"] == 10


class TestProfitLoss:
    def rows(self):
        return [
            {"account_code": "4000", "account_name": "Sales Revenue", "account_type": "REVENUE", "debit": 0, "credit": 1000},
            {"account_code": "5000", "account_name": "Cost of Goods Sold", "account_type": "EXPENSE", "debit": 400, "credit": 0},
            {"account_code": "6200", "account_name": "Rent", "account_type": "EXPENSE", "debit": 100, "credit": 0},
            {"account_code": "1010", "account_name": "Cash", "account_type": "ASSET", "debit": 900, "credit": 0},
        ]

    def test_cogs_separated_from_expenses(self):
        report = reports.profit_loss(self.rows(), date(2026, 1, 1), AS_OF)
        summary = report["summary"]
        assert summary["total_revenue"] == 1000
        assert summary["total_cogs"] == 400
        assert summary["gross_profit"] == 600
        assert summary["total_expenses"] == 100
        assert summary["net_income"] == 500
        assert summary["gross_margin_pct"] == 60
        assert summary["net_margin_pct"] == 50

    def test_balance_sheet_accounts_ignored(self):
        report = reports.profit_loss(self.rows(), date(2026, 1, 1), AS_OF)
        assert all(line["account_code"] != "1010" for line in report["data"])
        assert report["period"] == {"start_date": "2026-01-01", "end_date": "2026-01-31"}

    def test_no_revenue_means_zero_margins(self):
        report = reports.profit_loss(self.rows()[1:], date(2026, 1, 1), AS_OF)
        assert report["summary"]["gross_margin_pct"] == 0.0
        assert report["summary"]["net_income"] == -500


def test_account_balances_totals_per_type(balanced_ledger_rows):
    report = reports.account_balances(balanced_ledger_rows, AS_OF)
    assert report["summary"]["ASSET"] == 1300
    assert report["summary"]["EQUITY"] == 500
    assert len(report["data"]) == len(balanced_ledger_rows)


class TestCashFlow:
    def rows(self):
        return [
            {
                "id": 1, "name": "Main Bank", "account_type": "BANK", "opening_balance": 1000,
                "inflow_before": 500, "outflow_before": 200, "inflow": 300, "outflow": 100,
            },
            {
                "id": 2, "name": "Cash Drawer", "account_type": "CASH", "opening_balance": 50,
                "inflow_before": 0, "outflow_before": 0, "inflow": 0, "outflow": 20,
            },
        ]

    def test_positions(self):
        accounts, totals = reports.cash_positions(self.rows())
        assert accounts[0]["opening_balance"] == 1300
        assert accounts[0]["closing_balance"] == 1500
        assert accounts[1]["net_change"] == -20
        assert totals == {"opening": 1350, "inflow": 300, "outflow": 120, "closing": 1530}

    def test_cash_flow_summary(self):
        report = reports.cash_flow(self.rows(), date(2026, 1, 1), AS_OF)
        assert report["summary"]["net_cash_flow"] == 180
        assert report["summary"]["closing_cash"] == 1530
