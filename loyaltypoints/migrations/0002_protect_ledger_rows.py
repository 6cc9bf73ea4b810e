import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('orders', '0001_initial'),
        ('loyaltypoints', '0001_initial'),
    ]

    operations = [
        migrations.AlterField(
            model_name='loyaltypointlog',
            name='loyalty_account',
            field=models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='logs', to='loyaltypoints.loyaltypoint'),
        ),
        migrations.AlterField(
            model_name='loyaltypointlog',
            name='order',
            field=models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='loyalty_logs', to='orders.order'),
        ),
    ]
