import django.db.models.deletion
from django.db import migrations, models

STATUS_CHOICES = [
    ('PENDING_PAYMENT', 'Pending payment'),
    ('PAYMENT_FAILED', 'Payment failed'),
    ('PAYMENT_CONFIRMED', 'Payment confirmed'),
    ('PROCESSING', 'Processing'),
    ('SHIPPED_INTERNATIONAL', 'Shipped (international)'),
    ('SHIPPED_LOCAL', 'Shipped (local)'),
    ('DELIVERED', 'Delivered'),
    ('CANCELLED_BY_CUSTOMER', 'Cancelled by customer'),
    ('CANCELLED_BY_ADMIN', 'Cancelled by admin'),
    ('REFUNDED', 'Refunded'),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('catalog', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='Order',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('order_id', models.CharField(db_index=True, max_length=32, unique=True)),
                ('first_name', models.CharField(max_length=100)),
                ('last_name', models.CharField(blank=True, default='', max_length=100)),
                ('email', models.EmailField(db_index=True, max_length=100)),
                ('phone', models.CharField(max_length=16)),
                ('street', models.CharField(max_length=200)),
                ('barangay', models.CharField(max_length=100)),
                ('city', models.CharField(max_length=100)),
                ('province', models.CharField(max_length=100)),
                ('postal_code', models.CharField(max_length=4)),
                ('country', models.CharField(default='Philippines', max_length=64)),
                ('total_amount', models.PositiveBigIntegerField(help_text='Minor currency units (centavos)')),
                ('status', models.CharField(choices=STATUS_CHOICES, db_index=True, default='PENDING_PAYMENT', max_length=32)),
                ('checkout_session_id', models.CharField(blank=True, db_index=True, default='', max_length=64)),
                ('payment_intent_id', models.CharField(blank=True, db_index=True, default='', max_length=64)),
                ('payment_id', models.CharField(blank=True, default='', max_length=64)),
                ('payment_method', models.CharField(blank=True, default='', max_length=32)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('payment_status', models.CharField(blank=True, default='', max_length=32)),
                ('courier', models.CharField(blank=True, default='', max_length=64)),
                ('tracking_number', models.CharField(blank=True, default='', max_length=64)),
                ('shipped_at', models.DateTimeField(blank=True, null=True)),
                ('delivered_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True, db_index=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'ordering': ('-created_at',),
            },
        ),
        migrations.CreateModel(
            name='OrderItem',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=150)),
                ('price_at_purchase', models.PositiveIntegerField()),
                ('quantity', models.PositiveIntegerField()),
                ('image', models.URLField(blank=True, default='', max_length=500)),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='orders.order')),
                ('product', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='order_items', to='catalog.product')),
            ],
            options={
                'ordering': ('id',),
            },
        ),
        migrations.CreateModel(
            name='OrderNote',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('status', models.CharField(choices=STATUS_CHOICES, max_length=32)),
                ('author', models.CharField(blank=True, default='', max_length=150)),
                ('kind', models.CharField(choices=[('admin', 'Admin'), ('system', 'System')], default='admin', max_length=8)),
                ('text', models.TextField()),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='notes', to='orders.order')),
            ],
            options={
                'ordering': ('created_at', 'id'),
            },
        ),
    ]
