"""
Tests for the performance-report CLI.

Covers:
- Argument parsing
- Report output against an in-memory database
"""

import asyncio
import pytest
from decimal import Decimal
import uuid

import trading_dashboard.core.models.domain as dm
import trading_dashboard.cli.performance_report as performance_report
from trading_dashboard.cli.performance_report import _report, build_parser, main
from trading_dashboard.repositories.cash_transaction import CashTransactionRepository
from trading_dashboard.services.dashboard_service import DashboardService, build_cache
from trading_dashboard.services.time_window_performance import WindowStrategy
from trading_dashboard.tests.conftest import USER_ID, fixed_clock


@pytest.fixture
def dashboard(db_manager, settings):
    return DashboardService(db_manager, settings=settings,
                            cache=build_cache(settings, clock=fixed_clock))


class TestParser:

    def test_user_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_options(self):
        args = build_parser().parse_args([
            '--user', 'u-1', '--asset-type', 'crypto', '--strategy', 'realized_window', '--live-quotes',
        ])
        assert args.user == 'u-1'
        assert args.asset_type == 'crypto'
        assert args.strategy == 'realized_window'
        assert args.live_quotes
        assert not args.capture_snapshot

    def test_rejects_unknown_asset_type(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(['--user', 'u-1', '--asset-type', 'bonds'])


class TestLiveQuotes:

    def test_missing_yfinance_exits_before_reporting(self, monkeypatch, capsys):
        monkeypatch.setattr(performance_report.importlib.util, 'find_spec',
                            lambda name: None if name == 'yfinance' else object())

        assert main(['--user', 'u-1', '--live-quotes']) == 1
        assert "yfinance is not installed" in capsys.readouterr().out


class TestReport:

    def test_empty_portfolio(self, dashboard, capsys):
        code = asyncio.run(_report(dashboard, USER_ID, None, WindowStrategy.REALIZED_WINDOW, False))

        out = capsys.readouterr().out
        assert code == 0
        assert f"Portfolio: {USER_ID}" in out
        assert "Trade Statistics (all assets)" in out
        assert "No closed trades." in out

    def test_capture_snapshot_first(self, dashboard, db_manager, capsys):
        with db_manager.session_scope() as s:
            CashTransactionRepository(s).create_from_domain(dm.CashTransaction(
                id=str(uuid.uuid4()), user_id=USER_ID, transaction_code='DEPOSIT',
                amount=Decimal('2500'), activity_date=fixed_clock(),
            ))

        code = asyncio.run(_report(dashboard, USER_ID, dm.AssetType.STOCK, None, True))

        out = capsys.readouterr().out
        assert code == 0
        assert "Snapshot saved for" in out
        assert "Trade Statistics (stock)" in out
