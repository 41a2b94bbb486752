from typing import Iterable, List, Mapping, Optional

from cryptofolio.models import (
    AllocationRow,
    AssetPrice,
    PortfolioMetrics,
    Position,
    PositionWithMetrics,
    finite,
)


def value_positions(
    positions: Iterable[Position], prices: Optional[Mapping[str, AssetPrice]]
) -> List[PositionWithMetrics]:
    """Join positions with quotes. A missing quote values the position at 0."""
    prices = prices or {}
    rows = []
    for p in positions:
        quote = prices.get(p.asset)
        current_price = finite(quote.current_price) if quote else 0.0
        value = p.total_quantity * current_price
        pnl = value - p.total_investment
        rows.append(
            PositionWithMetrics(
                **p.model_dump(exclude={"transactions"}),
                transactions=p.transactions,
                current_price=current_price,
                value=value,
                pnl=pnl,
                pnl_percentage=pnl / p.total_investment * 100.0 if p.total_investment > 0 else 0.0,
                asset_info=quote,
            )
        )
    return rows


def change_24h(row: PositionWithMetrics) -> float:
    # Back-solves yesterday's value from today's % move applied to today's quantity;
    # off whenever the quantity changed inside the window.
    if row.asset_info is None:
        return 0.0
    pct = finite(row.asset_info.price_change_percentage_24h)
    if pct == 0.0 or pct <= -100.0:
        return 0.0
    prev_value = row.value / (1 + pct / 100.0)
    return row.value - prev_value


def portfolio_metrics(rows: Iterable[PositionWithMetrics]) -> PortfolioMetrics:
    m = PortfolioMetrics()
    for r in rows:
        m.total_value += r.value
        m.total_cost += r.total_investment
        m.total_pnl += r.pnl
        m.change_24h += change_24h(r)

    m.total_pnl_percentage = m.total_pnl / m.total_cost * 100.0 if m.total_cost > 0 else 0.0
    prev_total = m.total_value - m.change_24h
    m.change_24h_percentage = m.change_24h / prev_total * 100.0 if prev_total > 0 else 0.0
    return m


def allocation(rows: Iterable[PositionWithMetrics]) -> List[AllocationRow]:
    rows = list(rows)
    total = sum(r.value for r in rows)
    if total <= 0:
        return []
    ordered = sorted(rows, key=lambda r: r.value, reverse=True)
    return [
        AllocationRow(
            asset=r.asset,
            quantity=r.total_quantity,
            value=r.value,
            pnl=r.pnl,
            percentage=r.value / total * 100.0,
        )
        for r in ordered
    ]


def value_portfolio(positions: Iterable[Position], prices: Optional[Mapping[str, AssetPrice]]):
    """Rows, totals and allocation in one pass."""
    rows = value_positions(positions, prices)
    return rows, portfolio_metrics(rows), allocation(rows)
