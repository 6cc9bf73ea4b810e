from django.contrib import admin
from .models import LoyaltyPoint, LoyaltyPointLog


class LoyaltyPointLogInline(admin.TabularInline):
    model = LoyaltyPointLog
    fields = ('created_at', 'kind', 'points', 'description', 'order')
    readonly_fields = fields
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(LoyaltyPoint)
class LoyaltyPointAdmin(admin.ModelAdmin):
    """Balances are read-only here; corrections go through the adjust endpoint."""
    list_display = ('user', 'points', 'updated_at')
    search_fields = ('user__email', 'user__first_name', 'user__last_name')
    readonly_fields = ('user', 'points', 'updated_at')
    inlines = (LoyaltyPointLogInline,)

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(LoyaltyPointLog)
class LoyaltyPointLogAdmin(admin.ModelAdmin):
    list_display = ('loyalty_account', 'kind', 'points', 'order', 'created_at')
    list_filter = ('kind', 'created_at')
    search_fields = ('loyalty_account__user__email', 'description')
    readonly_fields = ('loyalty_account', 'points', 'kind', 'description', 'order', 'created_at')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
