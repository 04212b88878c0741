import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Medicine',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('item_id', models.CharField(max_length=100)),
                ('connect', models.CharField(db_index=True, max_length=50)),
                ('name', models.CharField(max_length=255)),
                ('kind', models.CharField(choices=[('medicine', 'Medicine'), ('supplement', 'Supplement')], default='medicine', max_length=20)),
                ('warning', models.BooleanField(default=False)),
                ('description', models.TextField(blank=True)),
                ('manufacturer', models.CharField(blank=True, max_length=255)),
                ('image_url', models.URLField(blank=True, max_length=500)),
                ('start_date', models.DateField(blank=True, null=True)),
                ('end_date', models.DateField(blank=True, null=True)),
                ('target_users', models.JSONField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('created_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='created_medicines', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Medicine',
                'verbose_name_plural': 'Medicines',
                'ordering': ['name'],
                'constraints': [models.UniqueConstraint(fields=('item_id', 'connect'), name='unique_item_per_household')],
            },
        ),
        migrations.CreateModel(
            name='SlotAssignment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('connect', models.CharField(db_index=True, max_length=50)),
                ('slot', models.PositiveSmallIntegerField(validators=[django.core.validators.MinValueValidator(1)])),
                ('total', models.PositiveIntegerField(default=0)),
                ('remain', models.PositiveIntegerField(default=0)),
                ('dispenser_id', models.CharField(blank=True, db_index=True, max_length=50, null=True)),
                ('error_status', models.CharField(blank=True, max_length=100)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('medicine', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='slot_assignment', to='medication.medicine')),
            ],
            options={
                'verbose_name': 'Slot Assignment',
                'verbose_name_plural': 'Slot Assignments',
                'ordering': ['connect', 'slot'],
                'constraints': [
                    models.UniqueConstraint(fields=('connect', 'slot'), name='unique_slot_per_household'),
                    models.CheckConstraint(condition=models.Q(('slot__gte', 1)), name='slot_positive'),
                    models.CheckConstraint(condition=models.Q(('remain__gte', 0)), name='remain_not_negative'),
                    models.CheckConstraint(condition=models.Q(('remain__lte', models.F('total'))), name='remain_within_total'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ScheduleEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('connect', models.CharField(db_index=True, max_length=50)),
                ('day_of_week', models.CharField(choices=[('mon', 'Monday'), ('tue', 'Tuesday'), ('wed', 'Wednesday'), ('thu', 'Thursday'), ('fri', 'Friday'), ('sat', 'Saturday'), ('sun', 'Sunday')], max_length=3)),
                ('time_of_day', models.CharField(choices=[('morning', 'Morning'), ('afternoon', 'Afternoon'), ('evening', 'Evening')], max_length=10)),
                ('dose', models.PositiveSmallIntegerField(default=1, validators=[django.core.validators.MinValueValidator(1)])),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('medicine', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='schedule_entries', to='medication.medicine')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='schedule_entries', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Schedule Entry',
                'verbose_name_plural': 'Schedule Entries',
                'ordering': ['user', 'medicine', 'day_of_week', 'time_of_day'],
                'constraints': [
                    models.UniqueConstraint(fields=('user', 'medicine', 'day_of_week', 'time_of_day'), name='unique_schedule_cell'),
                    models.CheckConstraint(condition=models.Q(('dose__gt', 0)), name='dose_positive'),
                ],
            },
        ),
        migrations.CreateModel(
            name='DoseHistory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('item_id', models.CharField(max_length=100)),
                ('connect', models.CharField(db_index=True, max_length=50)),
                ('time_of_day', models.CharField(choices=[('morning', 'Morning'), ('afternoon', 'Afternoon'), ('evening', 'Evening')], max_length=10)),
                ('dose_date', models.DateField(db_index=True)),
                ('scheduled_dose', models.PositiveSmallIntegerField(default=0)),
                ('actual_dose', models.PositiveSmallIntegerField(default=0)),
                ('status', models.CharField(choices=[('completed', 'Completed'), ('missed', 'Missed'), ('partial', 'Partial')], max_length=10)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('notes', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('medicine', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='dose_history', to='medication.medicine')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='dose_history', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'Dose History',
                'verbose_name_plural': 'Dose History',
                'ordering': ['-dose_date', 'time_of_day'],
                'indexes': [models.Index(fields=['connect', 'dose_date'], name='dose_history_connect_date')],
                'constraints': [models.UniqueConstraint(fields=('user', 'item_id', 'dose_date', 'time_of_day'), name='unique_dose_per_cell')],
            },
        ),
        migrations.CreateModel(
            name='DispenseLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('connect', models.CharField(db_index=True, max_length=50)),
                ('item_id', models.CharField(max_length=100)),
                ('slot', models.PositiveSmallIntegerField()),
                ('count', models.PositiveSmallIntegerField()),
                ('reason', models.CharField(choices=[('scheduled', 'Scheduled'), ('guidance', 'Dose Guidance'), ('missed', 'Missed Dose'), ('emergency', 'Emergency'), ('extra', 'Extra Dose')], default='scheduled', max_length=20)),
                ('remain_after', models.PositiveIntegerField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('requested_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='dispense_requests', to=settings.AUTH_USER_MODEL)),
                ('slot_assignment', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='dispense_logs', to='medication.slotassignment')),
            ],
            options={
                'verbose_name': 'Dispense Log',
                'verbose_name_plural': 'Dispense Logs',
                'ordering': ['-created_at'],
            },
        ),
    ]
