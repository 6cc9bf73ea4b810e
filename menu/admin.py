from django.contrib import admin
from .models import Category, MenuItem


class MenuItemInline(admin.TabularInline):
    model = MenuItem
    fields = ('name', 'price', 'is_available', 'is_popular')
    extra = 0


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ('name', 'sort_order', 'item_count')
    search_fields = ('name', 'description')
    ordering = ('sort_order', 'name')
    inlines = (MenuItemInline,)

    def item_count(self, obj):
        return obj.items.count()
    item_count.short_description = 'Items'


@admin.register(MenuItem)
class MenuItemAdmin(admin.ModelAdmin):
    list_display = ('name', 'category', 'price', 'is_available', 'is_popular')
    list_filter = ('category', 'is_available', 'is_popular')
    list_editable = ('price', 'is_available', 'is_popular')
    search_fields = ('name', 'description')
    list_select_related = ('category',)
