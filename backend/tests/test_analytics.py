"""
Analytics tests.

All sales figures come from shift activity logs; stock figures come from
live variants of published flowers. Shop timezone is UTC in tests.
"""

from datetime import datetime

import pytest

from floradesk.extensions import db
from floradesk.models import Shift
from floradesk.services import analytics_service
from floradesk.services.analytics_service import AnalyticsError, format_uk_number
from floradesk.time_utils import utcnow


def _iso(dt):
    return dt.isoformat(timespec="milliseconds") + "Z"


def _sale(activity_id, at, amount, items=None, **details):
    return {
        "id": activity_id,
        "type": "sale",
        "timestamp": _iso(at),
        "details": {"totalAmount": amount, "items": items or [], **details},
    }


def _shift(day: datetime, activities):
    shift = Shift(
        shift_date=day.strftime("%Y-%m-%d"),
        started_at=day.replace(hour=8, minute=0, second=0, microsecond=0),
        status="closed",
        activities=activities,
    )
    db.session.add(shift)
    db.session.commit()
    return shift


class TestFormatting:

    @pytest.mark.parametrize(
        "value,expected",
        [
            (0, "0"),
            (950, "950"),
            (1234567.5, "1\u00a0234\u00a0567,5"),
            (-2500, "-2\u00a0500"),
            (12.3456, "12,346"),
        ],
    )
    def test_format_uk_number(self, value, expected):
        assert format_uk_number(value) == expected


class TestSalesMetrics:

    def test_day_metrics(self, client, auth_headers):
        now = utcnow()
        _shift(now, [
            _sale("a", now, 300, items=[{"qty": 3}]),
            _sale("b", now, 150, items=[{"qty": 1}, {"qty": 2}]),
        ])

        resp = client.get("/api/analytics/sales?period=day", headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json["data"] == {
            "period": "day",
            "totalSales": 2,
            "totalAmount": 450,
            "avgOrderValue": 225,
            "itemsSold": 6,
        }

    def test_invalid_period(self, client, auth_headers):
        resp = client.get("/api/analytics/sales?period=year", headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json["error"]["code"] == "INVALID_PERIOD"


class TestWriteOffs:

    def test_summary_counts_deleted_stock_as_other(self, client, auth_headers):
        now = utcnow()
        _shift(now, [
            {
                "id": "w1", "type": "writeOff", "timestamp": _iso(now),
                "details": {"reason": "damage", "items": [{"name": "Троянда", "length": 60, "qty": 4, "price": 75}]},
            },
            {
                "id": "d1", "type": "productDelete", "timestamp": _iso(now),
                "details": {"productName": "Хризантема", "variants": [{"stock": 6, "price": 45}, {"stock": 0}]},
            },
        ])

        resp = client.get("/api/analytics/write-offs", headers=auth_headers)

        data = resp.json["data"]
        assert data["totalWriteOffs"] == 2
        assert data["totalItems"] == 10
        assert data["byReason"] == {"damage": 4, "expiry": 0, "adjustment": 0, "other": 6}
        assert data["recentWriteOffs"][0]["flowerName"] == "Троянда"

        top = analytics_service.get_top_write_off_flowers()
        assert top[0] == {"name": "Хризантема", "totalQty": 6, "totalAmount": 270, "percentage": 60}


class TestMonthlyBreakdowns:

    def test_weekly_buckets_fold_month_end_into_fourth_week(self, db_session):
        _shift(datetime(2025, 1, 2), [_sale("a", datetime(2025, 1, 2, 10), 50)])
        _shift(datetime(2025, 1, 30), [_sale("b", datetime(2025, 1, 30, 10), 100)])

        assert analytics_service.get_weekly_revenue(2025, 0) == [50, 0, 0, 100]
        assert analytics_service.get_orders_per_week(2025, 0) == [1, 0, 0, 1]

    def test_daily_sales_rows(self, client, auth_headers):
        _shift(datetime(2025, 3, 5), [
            _sale(f"s{i}", datetime(2025, 3, 5, 9 + i), 100) for i in range(4)
        ])

        resp = client.get("/api/analytics/daily-sales?year=2025&month=2", headers=auth_headers)

        rows = resp.json["data"]
        assert len(rows) == 31
        fifth = rows[4]
        assert fifth["date"] == "05.03"
        assert fifth["day"] == "Ср"
        assert fifth["orders"] == 4
        assert fifth["revenue"] == 400
        assert fifth["avg"] == 100
        assert fifth["status"] == "mid"
        assert rows[0]["status"] == "low"

    def test_kpis_compare_with_previous_month(self, db_session):
        _shift(datetime(2024, 12, 10), [_sale("old", datetime(2024, 12, 10, 12), 100)])
        _shift(datetime(2025, 1, 10), [_sale("new", datetime(2025, 1, 10, 12), 150)])

        kpis = analytics_service.get_kpis(2025, 0)

        assert kpis[0]["label"] == "Виручка"
        assert kpis[0]["value"] == "150 грн"
        assert kpis[0]["change"] == "+50%"
        assert kpis[0]["trend"] == "up"
        assert kpis[1]["value"] == "1"
        assert kpis[1]["change"] == "+0%"

    @pytest.mark.parametrize("query", ["month=12", "month=-1", "year=1999", "month=abc"])
    def test_invalid_month_arguments(self, client, auth_headers, query):
        resp = client.get(f"/api/analytics/daily-sales?{query}", headers=auth_headers)
        assert resp.status_code == 400

    def test_resolve_month_defaults_to_today(self):
        today = utcnow()
        assert analytics_service.resolve_month(None, None) == (today.year, today.month - 1)
        with pytest.raises(AnalyticsError):
            analytics_service.resolve_month(2025, 12)


class TestPayments:

    def test_pending_payments_grouped_by_customer(self, db_session):
        now = utcnow()
        _shift(now, [
            _sale("a", now, 100, paymentStatus="pending", customerId="c1", customerName="Анна"),
            _sale("b", now, 300, paymentStatus="expected", customerId="c2", customerName="Борис"),
            _sale("c", now, 50, paymentStatus="pending", customerId="c1", customerName="Анна"),
            _sale("d", now, 999, paymentStatus="paid", customerId="c1", customerName="Анна"),
        ])

        pending = analytics_service.get_pending_payments()

        assert pending["totalPendingAmount"] == 450
        assert pending["pendingOrdersCount"] == 3
        assert pending["pendingByCustomer"] == [
            {"customerId": "c2", "customerName": "Борис", "amount": 300},
            {"customerId": "c1", "customerName": "Анна", "amount": 150},
        ]
        summary = analytics_service.get_payment_summary(now.year, now.month - 1)
        assert summary == {"paidAmount": 999, "expectedAmount": 450}


class TestDashboard:

    def test_dashboard_payload(self, client, auth_headers, rose, customer):
        now = utcnow()
        _shift(now, [_sale("a", now, 750, items=[{"name": "Троянда червона", "qty": 10, "price": 75}])])

        resp = client.get("/api/analytics/dashboard", headers=auth_headers)

        assert resp.status_code == 200
        data = resp.json["data"]
        for key in (
            "kpis", "weeklyRevenue", "ordersPerWeek", "categorySplit", "topProducts", "supplyPlan",
            "dailySales", "stockLevels", "writeOffSummary", "topCustomers", "topWriteOffFlowers",
            "paidAmount", "expectedAmount", "totalPendingAmount", "pendingOrdersCount", "pendingByCustomer",
        ):
            assert key in data
        assert data["categorySplit"] == [{"name": "Троянда червона", "value": 100, "color": "bg-emerald-500"}]
        assert data["topProducts"] == [{"name": "Троянда червона", "share": 100}]
        assert data["stockLevels"][0]["stock"] == 50
        assert data["supplyPlan"]["currentStock"] == 150
        assert data["kpis"][4]["value"] == "150 шт"

    def test_current_month_is_cached_until_invalidated(self, client, auth_headers):
        now = utcnow()
        first = client.get("/api/analytics/dashboard", headers=auth_headers).json["data"]
        _shift(now, [_sale("late", now, 500)])

        cached = client.get("/api/analytics/dashboard", headers=auth_headers).json["data"]
        analytics_service.invalidate_analytics_cache()
        fresh = client.get("/api/analytics/dashboard", headers=auth_headers).json["data"]

        assert cached["kpis"][1]["value"] == first["kpis"][1]["value"] == "0"
        assert fresh["kpis"][1]["value"] == "1"

    def test_logged_activity_refreshes_cached_dashboard(self, client, auth_headers):
        before = client.get("/api/analytics/dashboard", headers=auth_headers).json["data"]
        client.post(
            "/api/shifts/current/activity",
            json={"activity": {"id": "counter-1", "type": "sale", "details": {"totalAmount": 500, "items": []}}},
            headers=auth_headers,
        )

        after = client.get("/api/analytics/dashboard", headers=auth_headers).json["data"]

        assert before["kpis"][1]["value"] == "0"
        assert after["kpis"][1]["value"] == "1"


class TestTopCustomers:

    def test_limit_is_clamped(self, client, auth_headers, customer):
        resp = client.get("/api/analytics/customers/top?limit=500", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json["data"][0]["name"] == "Квіткова лавка"
        assert resp.json["data"][0]["lastOrderDate"] is None
