from rest_framework import viewsets, status
from rest_framework.response import Response
from drf_spectacular.utils import extend_schema, OpenApiParameter, OpenApiExample
from drf_spectacular.types import OpenApiTypes
from datetime import date, timedelta
from decimal import Decimal

from django.db.models import Sum, Count, Q, F, DecimalField, ExpressionWrapper
from django.db.models.functions import Coalesce, TruncDate, ExtractHour
from django.utils import timezone

from core.permissions import IsShopAdmin
from menu.models import MenuItem
from orders.models import Order, OrderItem
from loyaltypoints.models import LoyaltyPointLog

# Orders that count towards sales figures
SOLD_STATUSES = ('paid', 'processing', 'completed')
TOP_LIMIT = 5


def resolve_period(params):
    """Returns (start_date, end_date, period) or raises ValueError."""
    period = params.get('period', 'month')
    today = timezone.localdate()

    if period == 'today':
        return today, today, period
    if period == 'week':
        return today - timedelta(days=today.weekday()), today, period
    if period == 'month':
        return today.replace(day=1), today, period
    if period == 'year':
        return today.replace(day=1, month=1), today, period
    if period == 'custom':
        try:
            start_date = date.fromisoformat(params.get('start_date'))
            end_date = date.fromisoformat(params.get('end_date'))
        except (ValueError, TypeError):
            raise ValueError("Invalid start_date or end_date. Use YYYY-MM-DD format.")
        if start_date > end_date:
            raise ValueError("start_date must not be after end_date.")
        return start_date, end_date, period
    raise ValueError("Invalid period parameter.")


class DashboardViewSet(viewsets.ViewSet):
    """
    A read-only viewset that provides the aggregated KPIs for the shop's
    admin dashboard.

    Filter the data by using the `period` query parameter.
    """
    permission_classes = [IsShopAdmin]

    @extend_schema(
        summary="Get All Dashboard KPIs",
        description="""
        Sales, menu and loyalty KPIs for the admin dashboard.

        - Metrics with `_in_period` in their name are calculated for the selected time frame.
        - Metrics with `_total` are point-in-time stats and do not change with the date filter.

        **Available `period` options:**
        - `today`, `week`, `month` (default), `year`, `custom` (requires `start_date` and `end_date`).
        """,
        parameters=[
            OpenApiParameter(name='period', type=OpenApiTypes.STR, location=OpenApiParameter.QUERY, enum=['today', 'week', 'month', 'year', 'custom'], default='month'),
            OpenApiParameter(name='start_date', type=OpenApiTypes.DATE, location=OpenApiParameter.QUERY, description='Required if period is "custom".'),
            OpenApiParameter(name='end_date', type=OpenApiTypes.DATE, location=OpenApiParameter.QUERY, description='Required if period is "custom".'),
        ],
        examples=[
            OpenApiExample(
                'Example Dashboard Response',
                value={
                    "orders_in_period": 42,
                    "revenue_in_period": "812.58",
                    "average_order_value_in_period": "19.35",
                    "discounts_in_period": "14.00",
                    "menu_items_total": 24,
                    "points_issued_in_period": 1450,
                    "points_redeemed_in_period": 1400,
                    "spins_in_period": 30,
                    "spin_wins_in_period": 7,
                    "recent_orders": [],
                    "top_selling_items": [{"name": "Margherita", "quantity": 31}],
                    "sales_by_category": [{"name": "Pizzas", "total": "540.00"}],
                    "sales_over_time": [{"date": "2025-09-01", "total": "120.50", "orders": 6}],
                    "hourly_orders": [{"hour": 19, "orders": 12}],
                    "time_period": {"start": "2025-09-01", "end": "2025-09-30", "filter_used": "month"}
                },
                response_only=True,
            )
        ]
    )
    def list(self, request):
        # --- 1. Calculate Date Range ---
        try:
            start_date, end_date, period = resolve_period(request.query_params)
        except ValueError as exc:
            return Response({"error": str(exc)}, status=status.HTTP_400_BAD_REQUEST)

        # --- 2. Define Date Filters ---
        period_filter = Q(created_at__date__range=(start_date, end_date))
        orders = Order.objects.filter(period_filter, status__in=SOLD_STATUSES)
        items = OrderItem.objects.filter(
            order__created_at__date__range=(start_date, end_date),
            order__status__in=SOLD_STATUSES
        )
        logs = LoyaltyPointLog.objects.filter(period_filter)

        # --- 3. Perform Aggregations ---
        zero = Decimal('0.00')
        totals = orders.aggregate(
            count=Count('id'),
            revenue=Coalesce(Sum('total_amount'), zero, output_field=DecimalField()),
            discounts=Coalesce(Sum('discount'), zero, output_field=DecimalField()),
        )
        average = (totals['revenue'] / totals['count']).quantize(zero) if totals['count'] else zero

        line_total = ExpressionWrapper(F('unit_price') * F('quantity'), output_field=DecimalField())
        top_selling = items.values('name').annotate(sold=Sum('quantity')).order_by('-sold', 'name')[:TOP_LIMIT]
        by_category = items.values(
            category_name=Coalesce('menu_item__category__name', F('name'))
        ).annotate(total=Sum(line_total)).order_by('-total')
        over_time = orders.annotate(day=TruncDate('created_at')).values('day').annotate(
            total=Sum('total_amount'), orders=Count('id')
        ).order_by('day')
        hourly = orders.annotate(hour=ExtractHour('created_at')).values('hour').annotate(
            orders=Count('id')
        ).order_by('hour')

        # Loyalty Metrics (Period-Specific)
        points_issued = logs.filter(points__gt=0).aggregate(total=Sum('points'))['total'] or 0
        points_redeemed = -(logs.filter(kind=LoyaltyPointLog.KIND_REDEEMED).aggregate(total=Sum('points'))['total'] or 0)
        spins = logs.filter(kind=LoyaltyPointLog.KIND_WHEEL_SPIN)

        recent_orders = Order.objects.select_related('user').order_by('-created_at')[:TOP_LIMIT]

        data = {
            "orders_in_period": totals['count'],
            "revenue_in_period": str(totals['revenue']),
            "average_order_value_in_period": str(average),
            "discounts_in_period": str(totals['discounts']),
            "menu_items_total": MenuItem.objects.count(),
            "points_issued_in_period": points_issued,
            "points_redeemed_in_period": points_redeemed,
            "spins_in_period": spins.count(),
            "spin_wins_in_period": spins.filter(points__gt=0).count(),
            "recent_orders": [
                {
                    "id": order.pk,
                    "customer": (order.user.get_full_name() or order.user.email) if order.user else f"{order.full_name} (guest)",
                    "total": str(order.total_amount),
                    "status": order.status,
                    "created_at": order.created_at.isoformat(),
                }
                for order in recent_orders
            ],
            "top_selling_items": [
                {"name": row['name'], "quantity": row['sold']} for row in top_selling
            ],
            "sales_by_category": [
                {"name": row['category_name'], "total": str(row['total'])} for row in by_category
            ],
            "sales_over_time": [
                {"date": row['day'].isoformat(), "total": str(row['total']), "orders": row['orders']}
                for row in over_time
            ],
            "hourly_orders": [
                {"hour": row['hour'], "orders": row['orders']} for row in hourly
            ],
            "time_period": {
                "start": start_date.isoformat(),
                "end": end_date.isoformat(),
                "filter_used": period,
            }
        }
        return Response(data)
