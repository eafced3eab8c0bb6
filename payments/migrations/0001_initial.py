import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PaymentTransaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("provider_reference", models.CharField(max_length=128, unique=True)),
                ("transaction_type", models.CharField(default="charge", max_length=16)),
                ("amount", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("currency", models.CharField(default="NGN", max_length=8)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("paid", "Paid"), ("failed", "Failed")],
                        db_index=True,
                        default="pending",
                        max_length=12,
                    ),
                ),
                ("channel", models.CharField(blank=True, default="", max_length=32)),
                ("customer_email", models.EmailField(blank=True, default="", max_length=254)),
                ("authorization_url", models.URLField(blank=True, default="", max_length=500)),
                ("access_code", models.CharField(blank=True, default="", max_length=128)),
                ("gateway_response", models.CharField(blank=True, default="", max_length=255)),
                ("metadata", models.JSONField(blank=True, null=True)),
                ("provider_response", models.JSONField(blank=True, null=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="payment_transactions",
                        to="orders.order",
                    ),
                ),
            ],
            options={
                "ordering": ("-created_at",),
            },
        ),
    ]
