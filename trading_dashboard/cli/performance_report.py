"""
CLI: Print the dashboard metrics for one user.

Usage:
    python -m trading_dashboard.cli.performance_report --user u-123
    python -m trading_dashboard.cli.performance_report --user u-123 --asset-type option
    python -m trading_dashboard.cli.performance_report --user u-123 --live-quotes --capture-snapshot
"""

import argparse
import asyncio
import importlib.util
import sys

from tabulate import tabulate

import trading_dashboard.core.models.domain as dm
from trading_dashboard.services.time_window_performance import WindowStrategy


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Portfolio value, win rate and time-window performance for one user"
    )
    parser.add_argument(
        '--user', type=str, required=True,
        help='User id whose positions and cash ledger are reported',
    )
    parser.add_argument(
        '--asset-type', type=str, choices=[a.value for a in dm.AssetType],
        help='Restrict trade statistics to one asset type',
    )
    parser.add_argument(
        '--strategy', type=str, choices=[s.value for s in WindowStrategy],
        help='P&L strategy for every time window (default: per-window setting)',
    )
    parser.add_argument(
        '--live-quotes', action='store_true',
        help='Price open positions with yfinance instead of stored values',
    )
    parser.add_argument(
        '--capture-snapshot', action='store_true',
        help="Save today's portfolio snapshot before reporting",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    if args.live_quotes and importlib.util.find_spec('yfinance') is None:
        print("ERROR: Live quotes unavailable: yfinance is not installed")
        return 1

    from trading_dashboard.config.settings import get_settings, setup_logging
    from trading_dashboard.core.database.session import get_db_manager, init_database
    from trading_dashboard.services.dashboard_service import DashboardService

    settings = get_settings()
    setup_logging(settings)
    init_database()

    provider = None
    if args.live_quotes:
        from trading_dashboard.adapters.yfinance_adapter import YFinanceQuoteProvider
        provider = YFinanceQuoteProvider()

    dashboard = DashboardService(get_db_manager(), quote_provider=provider, settings=settings)
    asset_type = dm.AssetType(args.asset_type) if args.asset_type else None
    strategy = WindowStrategy(args.strategy) if args.strategy else None

    return asyncio.run(_report(dashboard, args.user, asset_type, strategy, args.capture_snapshot))


async def _report(dashboard, user_id: str, asset_type, strategy, capture_snapshot: bool) -> int:
    if capture_snapshot:
        snapshot = await dashboard.capture_snapshot(user_id)
        if snapshot is None:
            print("ERROR: Snapshot could not be saved")
            return 1
        print(f"\nSnapshot saved for {snapshot.snapshot_date}")

    value = await dashboard.portfolio_value(user_id)
    print(f"\n{'=' * 60}")
    print(f"  Portfolio: {user_id}")
    print(f"{'=' * 60}")
    print(tabulate(value.to_summary_rows(), tablefmt="grid"))

    label = asset_type.value if asset_type else "all assets"
    metrics = await dashboard.win_rate(user_id, asset_type=asset_type)
    print(f"\nTrade Statistics ({label})")
    print(tabulate(metrics.to_summary_rows(), tablefmt="grid"))

    periods = [
        await dashboard.daily_performance(user_id, strategy=strategy),
        await dashboard.weekly_performance(user_id, strategy=strategy),
        await dashboard.monthly_performance(user_id, strategy=strategy),
        await dashboard.yearly_performance(user_id, strategy=strategy),
    ]
    print("\nPerformance")
    print(tabulate([p.to_summary_row() for p in periods],
                   headers=["Window", "Strategy", "P&L", "P&L %", "Baseline"], tablefmt="simple"))

    symbols = await dashboard.performance_by_symbol(user_id, asset_type=asset_type)
    print("\nBy Symbol")
    if symbols:
        print(tabulate([g.to_summary_row() for g in symbols],
                       headers=["Symbol", "Trades", "Win Rate", "P&L", "Avg P&L"], tablefmt="simple"))
    else:
        print("  No closed trades.")

    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
