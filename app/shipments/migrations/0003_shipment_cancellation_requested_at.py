from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("shipments", "0002_alter_shipment_driver_earnings_status"),
    ]

    operations = [
        migrations.AddField(
            model_name="shipment",
            name="cancellation_requested_at",
            field=models.DateTimeField(blank=True, null=True),
        ),
    ]
