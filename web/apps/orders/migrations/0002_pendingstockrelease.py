from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("orders", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PendingStockRelease",
            fields=[
                ("reference", models.CharField(max_length=200, primary_key=True, serialize=False)),
                ("items", models.JSONField(default=list)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "order_pending_stock_releases",
                "ordering": ["created_at"],
            },
        ),
    ]
