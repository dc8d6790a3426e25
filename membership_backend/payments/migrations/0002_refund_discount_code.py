# payments/migrations/0002_refund_discount_code.py

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("payments", "0001_initial"),
        ("discounts", "0001_initial"),
    ]

    operations = [
        migrations.AddField(
            model_name="refund",
            name="discount_code",
            field=models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.PROTECT,
                related_name="refunds",
                to="discounts.discountcode",
            ),
        ),
        migrations.AddConstraint(
            model_name="refund",
            constraint=models.CheckConstraint(
                condition=~models.Q(refund_type="discount_code") | models.Q(discount_code__isnull=False),
                name="chk_refund_discount_code_present",
            ),
        ),
    ]
