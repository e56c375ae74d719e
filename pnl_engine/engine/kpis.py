"""
P&L metric computation shared by the overview and table builders.

``compute_pnl_metrics`` turns an aggregate, the policy cost totals for the
same window, and the window's manual return rate into final P&L figures:

    net revenue       = max(revenue - refunds - rto_lost, 0)
    gross profit      = net revenue - cogs x retention
    operating costs   = shipping + fees + (handling + taxes) x retention + custom
    operating profit  = gross profit - operating costs
    net profit        = operating profit - ad spend

Every ratio is guarded with ``safe_divide``.
"""

from typing import Optional

from pnl_engine.config import Settings
from pnl_engine.engine.retention import apply_return_loss
from pnl_engine.models.costs import CostTotals
from pnl_engine.models.enums import NewCustomerSource, ShippingDedupMode
from pnl_engine.models.metrics import AggregatedMetrics
from pnl_engine.models.pnl import KPI_FIELDS, KPIBundle, PnLMetrics
from pnl_engine.utils.logging import get_logger
from pnl_engine.utils.numeric import percentage_change, safe_divide

logger = get_logger(__name__)


def resolve_shipping(snapshot_shipping: float, policy_shipping: float, settings: Settings) -> float:
    """
    Combine snapshot shipping cost with shipping-category policy amounts.

    Args:
        snapshot_shipping: Shipping cost summed from daily snapshots
        policy_shipping: Shipping amount from cost policies for the same window
        settings: Supplies the dedup mode and tolerances

    Returns:
        Shipping cost to book for the window
    """
    mode = settings.shipping_dedup_mode

    if mode == ShippingDedupMode.ADDITIVE:
        return snapshot_shipping + policy_shipping

    if mode == ShippingDedupMode.REPLACE:
        return policy_shipping if policy_shipping > 0 else snapshot_shipping

    if snapshot_shipping > 0 and policy_shipping > 0:
        tolerance = max(
            settings.shipping_dedup_tolerance_ratio * snapshot_shipping,
            settings.shipping_dedup_tolerance_abs,
        )
        if abs(policy_shipping - snapshot_shipping) <= tolerance:
            logger.debug(
                "shipping_dedup_applied",
                snapshot_shipping=snapshot_shipping,
                policy_shipping=policy_shipping,
                tolerance=tolerance,
            )
            return snapshot_shipping
    return snapshot_shipping + policy_shipping


def count_new_customers(aggregate: AggregatedMetrics, source: NewCustomerSource) -> float:
    """New customers in the window according to the configured signal."""
    if source == NewCustomerSource.DERIVED:
        return max(aggregate.paid_customers - aggregate.returning_customers, 0.0)
    return aggregate.new_customers


def compute_pnl_metrics(
    aggregate: AggregatedMetrics,
    cost_totals: CostTotals,
    manual_return_rate_percent: float,
    settings: Settings,
    ad_spend: Optional[float] = None,
) -> PnLMetrics:
    """
    Final P&L figures for one window.

    Args:
        aggregate: Merged daily metrics for the window (its return-loss
            fields are filled in as a side effect)
        cost_totals: Policy cost amounts for the window, by category
        manual_return_rate_percent: Return-rate override for the window
        settings: Shipping dedup and new-customer policies
        ad_spend: Marketing spend override; snapshot marketing cost when None

    Returns:
        PnLMetrics for the window
    """
    factor = apply_return_loss(aggregate, manual_return_rate_percent)

    gross_revenue = aggregate.revenue
    refunds = aggregate.refunds
    rto_lost = aggregate.rto_revenue_lost
    ads = aggregate.marketing_cost if ad_spend is None else ad_spend

    cogs = aggregate.cogs * factor
    handling = aggregate.handling_fees * factor
    taxes = aggregate.taxes * factor
    shipping = resolve_shipping(aggregate.shipping_costs, cost_totals.shipping, settings)
    fees = aggregate.transaction_fees + cost_totals.transaction_fees
    custom = cost_totals.custom

    net_revenue = max(gross_revenue - refunds - rto_lost, 0.0)
    gross_profit = net_revenue - cogs
    operating_costs = shipping + fees + handling + taxes + custom
    operating_profit = gross_profit - operating_costs
    net_profit = operating_profit - ads
    contribution = net_revenue - (cogs + shipping + fees + handling + custom)

    new_customers = count_new_customers(aggregate, settings.new_customer_source)
    cac = safe_divide(ads, new_customers)
    average_order_value = safe_divide(gross_revenue, aggregate.orders)
    repeat_rate = safe_divide(aggregate.repeat_customers, aggregate.customers)
    ltv = average_order_value * (1 + repeat_rate)

    return PnLMetrics(
        gross_sales=aggregate.gross_sales,
        discounts=aggregate.discounts,
        gross_revenue=gross_revenue,
        refunds=refunds,
        rto_revenue_lost=rto_lost,
        revenue=net_revenue,
        cogs=cogs,
        shipping_costs=shipping,
        transaction_fees=fees,
        handling_fees=handling,
        taxes=taxes,
        custom_costs=custom,
        total_costs=cogs + operating_costs,
        ad_spend=ads,
        gross_profit=gross_profit,
        gross_profit_margin=safe_divide(gross_profit, net_revenue) * 100,
        contribution_margin=contribution,
        operating_profit=operating_profit,
        net_profit=net_profit,
        net_profit_margin=safe_divide(net_profit, net_revenue) * 100,
        roas=safe_divide(gross_revenue, ads),
        poas=safe_divide(net_profit, ads),
        cac=cac,
        ltv=ltv,
        ltv_to_cac=safe_divide(ltv, cac),
        orders=aggregate.orders,
        units_sold=aggregate.units_sold,
        new_customers=new_customers,
        manual_return_rate_percent=aggregate.manual_return_rate_percent,
        retention_factor=factor,
    )


def _kpi_values(metrics: PnLMetrics) -> dict[str, float]:
    ads = metrics.ad_spend
    return {
        "gross_sales": metrics.gross_sales,
        "discounts_returns": metrics.discounts + metrics.refunds + metrics.rto_revenue_lost,
        "gross_revenue": metrics.gross_revenue,
        "revenue": metrics.revenue,
        "cogs": metrics.cogs,
        "shipping_costs": metrics.shipping_costs,
        "transaction_fees": metrics.transaction_fees,
        "handling_fees": metrics.handling_fees,
        "taxes": metrics.taxes,
        "custom_costs": metrics.custom_costs,
        "operating_expenses": metrics.custom_costs,
        "ad_spend": ads,
        "gross_profit": metrics.gross_profit,
        "ebitda": metrics.net_profit + ads + metrics.custom_costs,
        "net_profit": metrics.net_profit,
        "net_profit_margin": metrics.net_profit_margin,
        "marketing_roas": safe_divide(metrics.gross_revenue, ads),
        "marketing_roi": safe_divide(metrics.net_profit, ads) * 100,
        "poas": metrics.poas,
        "cac": metrics.cac,
        "ltv_to_cac": metrics.ltv_to_cac,
    }


def build_kpi_bundle(current: PnLMetrics, previous: Optional[PnLMetrics]) -> KPIBundle:
    """
    Headline KPIs for ``current`` with percentage changes against ``previous``.

    A missing previous window compares against zero.
    """
    values = _kpi_values(current)
    previous_values = _kpi_values(previous) if previous is not None else {}
    changes = {
        name: percentage_change(values[name], previous_values.get(name, 0.0))
        for name in KPI_FIELDS
    }
    return KPIBundle(**values, changes=changes)
