# registrations/migrations/0002_userregistration_discount_code.py

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("registrations", "0001_initial"),
        ("discounts", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="userregistration",
            name="discount_code",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="registrations",
                to="discounts.discountcode",
            ),
        ),
    ]
