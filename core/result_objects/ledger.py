"""Ledger analysis result objects."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import pandas as pd

from ledger_engine._vendor import make_json_safe
from ledger_engine.data_objects import Account
from ledger_engine.rebalance import RebalancePlan
from ledger_engine.rollups import AccountPerformance, AssetAllocationItem
from ledger_engine.timeseries import AnnualPerformanceItem, ChartDataPoint
from ledger_engine.valuation import Holding, PortfolioSummary
from ._helpers import _convert_to_json_serializable, _format_df_as_text


@dataclass
class LedgerAnalysisResult:
    """
    Typed result object for one ledger replay/valuation pass.

    Called by:
    - ``core.ledger_analysis.analyze_ledger``
    - ``run_ledger`` CLI

    Contract:
    - Every field is populated for any accepted ledger; data problems surface
      in ``warnings``/``inconsistencies`` and ``flags``, never as exceptions.
    - ``to_api_response`` emits a JSON-safe camelCase envelope.
    - ``to_cli_report`` renders the same content as text tables.
    """

    as_of: date
    summary: PortfolioSummary
    holdings: List[Holding] = field(default_factory=list)
    merged_holdings: List[Holding] = field(default_factory=list)
    accounts: List[Account] = field(default_factory=list)
    chart_data: List[ChartDataPoint] = field(default_factory=list)
    annual_performance: List[AnnualPerformanceItem] = field(default_factory=list)
    account_performance: List[AccountPerformance] = field(default_factory=list)
    asset_allocation: List[AssetAllocationItem] = field(default_factory=list)
    rebalance: Optional[RebalancePlan] = None
    warnings: List[str] = field(default_factory=list)
    inconsistencies: List[Dict[str, Any]] = field(default_factory=list)
    orphan_transaction_ids: List[str] = field(default_factory=list)
    orphan_cash_flow_ids: List[str] = field(default_factory=list)
    skipped_ids: List[str] = field(default_factory=list)
    flags: List[Dict[str, Any]] = field(default_factory=list)
    cache_key: Optional[str] = None

    @property
    def annualized_return(self) -> float:
        return self.summary.annualized_return

    def get_summary(self) -> Dict[str, Any]:
        """Headline numbers only."""
        s = self.summary
        return make_json_safe(
            {
                "as_of": self.as_of,
                "reporting_currency": s.reporting_currency,
                "total_assets": s.total_assets,
                "net_invested": s.net_invested,
                "total_pl": s.total_pl,
                "total_pl_percent": s.total_pl_percent,
                "annualized_return": s.annualized_return,
                "holding_count": len(self.holdings),
                "account_count": len(self.accounts),
                "warning_count": len(self.warnings),
            }
        )

    def get_agent_snapshot(self) -> Dict[str, Any]:
        """Compact payload consumed by ``generate_ledger_flags``."""
        s = self.summary
        missing_prices = sorted({h.price_key for h in self.holdings if h.is_price_missing})
        missing_fx = sorted(
            {
                w.split("Missing exchange rate for ", 1)[1].split(";", 1)[0]
                for w in self.warnings
                if w.startswith("Missing exchange rate for ")
            }
        )
        snapshot = {
            "as_of": self.as_of,
            "returns": {
                "total_pl": s.total_pl,
                "total_pl_pct": s.total_pl_percent if s.net_invested > 0 else None,
                "annualized_return_pct": s.annualized_return,
            },
            "cash": {
                "balance": s.cash_balance,
                "weight_pct": s.cash_weight,
                "negative_accounts": [a.id for a in self.accounts if a.balance < -1e-6],
            },
            "data_quality": {
                "clamped_sell_count": sum(1 for i in self.inconsistencies if i.get("type") == "oversell"),
                "orphan_transaction_count": len(self.orphan_transaction_ids),
                "orphan_cash_flow_count": len(self.orphan_cash_flow_ids),
                "skipped_count": len(self.skipped_ids),
                "missing_price_tickers": missing_prices,
                "missing_fx_currencies": missing_fx,
                "estimated_years": [p.year for p in self.chart_data if not p.is_real_data],
                "warning_count": len(self.warnings),
            },
        }
        return make_json_safe(snapshot)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "asOf": self.as_of.isoformat(),
            "summary": self.summary.to_dict(),
            "holdings": [h.to_dict() for h in self.holdings],
            "mergedHoldings": [h.to_dict() for h in self.merged_holdings],
            "accounts": [a.to_dict() for a in self.accounts],
            "chartData": [p.to_dict() for p in self.chart_data],
            "annualPerformance": [i.to_dict() for i in self.annual_performance],
            "accountPerformance": [a.to_dict() for a in self.account_performance],
            "assetAllocation": [a.to_dict() for a in self.asset_allocation],
            "rebalance": self.rebalance.to_dict() if self.rebalance is not None else None,
            "warnings": list(self.warnings),
            "inconsistencies": list(self.inconsistencies),
            "orphanTransactionIds": list(self.orphan_transaction_ids),
            "orphanCashFlowIds": list(self.orphan_cash_flow_ids),
            "skippedIds": list(self.skipped_ids),
            "flags": list(self.flags),
            "cacheKey": self.cache_key,
        }

    def to_api_response(self) -> Dict[str, Any]:
        response = self.to_dict()
        response["status"] = "success"
        response["analysis_type"] = "ledger"
        return make_json_safe(_convert_to_json_serializable(response))

    # ── CLI ─────────────────────────────────────

    def _holdings_frame(self, merged: bool) -> pd.DataFrame:
        rows = self.merged_holdings if merged else self.holdings
        return pd.DataFrame(
            [
                {
                    "Account": ",".join(h.account_ids) if merged else h.account_id,
                    "Ticker": f"{h.market}-{h.ticker}",
                    "Qty": h.quantity,
                    "Avg Cost": h.avg_cost,
                    "Price": h.current_price,
                    "Value": h.value_reporting,
                    "P&L": h.unrealized_pl,
                    "P&L %": h.unrealized_pl_percent,
                    "Weight %": h.weight,
                    "Ann. %": h.annualized_return,
                }
                for h in rows
            ]
        )

    def to_cli_report(self, merged: bool = False, include_rebalance: bool = False) -> str:
        s = self.summary
        ccy = s.reporting_currency
        lines = [f"Ledger Report (as of {self.as_of.isoformat()}, {ccy})", "=" * 50]
        lines.append(f"Total assets:       {s.total_assets:,.2f}")
        lines.append(f"  Holdings:         {s.holdings_value:,.2f}")
        lines.append(f"  Cash:             {s.cash_balance:,.2f} ({s.cash_weight:.1f}%)")
        lines.append(f"Net invested:       {s.net_invested:,.2f}")
        lines.append(f"Total P&L:          {s.total_pl:,.2f} ({s.total_pl_percent:.2f}%)")
        lines.append(f"Annualized return:  {s.annualized_return:.2f}%")
        lines.append(f"Dividends (cash/stock): {s.cash_dividends:,.2f} / {s.stock_dividends:,.2f}")
        if s.avg_usd_rate > 0:
            lines.append(f"Avg USD cost rate:  {s.avg_usd_rate:.4f}")

        lines += _format_df_as_text(self._holdings_frame(merged), title="Holdings")
        lines += _format_df_as_text(
            pd.DataFrame(
                [
                    {
                        "Account": a.name,
                        "Ccy": a.currency,
                        "Cash": a.cash_balance,
                        "Market Value": a.market_value,
                        "Net Invested": a.net_invested,
                        "Profit": a.profit,
                        "ROI %": a.roi,
                        "Ann. %": a.annualized_return,
                    }
                    for a in self.account_performance
                ]
            ),
            title="Accounts",
        )
        lines += _format_df_as_text(
            pd.DataFrame(
                [
                    {
                        "Year": i.year,
                        "Start": i.start_assets,
                        "Net Inflow": i.net_inflow,
                        "End": i.end_assets,
                        "Profit": i.profit,
                        "ROI %": i.roi,
                        "Real": i.is_real_data,
                    }
                    for i in self.annual_performance
                ]
            ),
            title="Annual Performance",
        )
        lines += _format_df_as_text(
            pd.DataFrame([{"Asset": a.name, "Value": a.value, "Ratio %": a.ratio} for a in self.asset_allocation]),
            title="Asset Allocation",
        )
        if include_rebalance and self.rebalance is not None:
            plan = self.rebalance
            rows = [
                {
                    "Key": r.key,
                    "Current %": r.current_pct,
                    "Target %": r.target_pct,
                    "Diff Value": r.diff_value,
                    "Diff Shares": r.diff_shares,
                    "Side": r.side,
                }
                for r in plan.rows
            ]
            rows.append(
                {
                    "Key": "Cash",
                    "Current %": plan.cash_current_pct,
                    "Target %": plan.cash_target_pct,
                    "Diff Value": plan.cash_diff_value,
                    "Diff Shares": None,
                    "Side": "",
                }
            )
            lines += _format_df_as_text(pd.DataFrame(rows), title="Rebalance")

        if self.flags:
            lines.append("\nFlags")
            for flag in self.flags:
                lines.append(f"  [{flag.get('severity')}] {flag.get('message')}")
        if self.warnings:
            lines.append("\nWarnings")
            for w in self.warnings:
                lines.append(f"  - {w}")
        return "\n".join(lines)
