from django.contrib import admin
from .models import Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    fields = ('name', 'unit_price', 'quantity', 'menu_item')
    readonly_fields = fields
    extra = 0
    can_delete = False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ('id', 'full_name', 'user', 'status', 'payment_method', 'total_amount', 'pending_spin', 'created_at')
    list_filter = ('status', 'payment_method', 'pending_spin', 'created_at')
    list_editable = ('status',)
    search_fields = ('full_name', 'phone', 'user__email', 'street_address', 'city')
    date_hierarchy = 'created_at'
    inlines = (OrderItemInline,)
    readonly_fields = (
        'user', 'payment_method', 'subtotal', 'delivery_fee', 'discount',
        'points_redeemed', 'total_amount', 'pending_spin', 'created_at', 'updated_at'
    )

    def has_delete_permission(self, request, obj=None):
        # Orders are kept; cancel them through the status field instead
        return False
