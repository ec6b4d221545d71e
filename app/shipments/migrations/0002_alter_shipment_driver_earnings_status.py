from django.db import migrations, models


class Migration(migrations.Migration):
    dependencies = [
        ("shipments", "0001_initial"),
    ]

    operations = [
        migrations.AlterField(
            model_name="shipment",
            name="driver_earnings_status",
            field=models.CharField(
                choices=[
                    ("PENDING", "Pending"),
                    ("AVAILABLE", "Available"),
                    ("WITHDRAWN", "Withdrawn"),
                    ("PAID_OUT", "Paid out"),
                ],
                db_index=True,
                default="PENDING",
                max_length=20,
            ),
        ),
    ]
